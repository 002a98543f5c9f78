"""
Compliance Services

Classification, COA ingestion, eligibility and audit services.

Note: Imports are lazy to avoid circular import issues.
Use explicit imports from submodules when needed:
    from app.services.eligibility import check_eligibility
    from app.services.ai_classifier import get_ai_classifier
    from app.services.compliance_service import get_compliance_service
"""


def __getattr__(name):
    """Lazy import to avoid circular imports."""
    if name in ('KeywordRuleEngine', 'KeywordEvaluation'):
        from app.services.keyword_rules import KeywordRuleEngine, KeywordEvaluation
        return KeywordRuleEngine if name == 'KeywordRuleEngine' else KeywordEvaluation

    if name in ('RuleCatalog', 'RuleSnapshot', 'get_rule_catalog', 'initialize_default_rules'):
        from app.services.rule_catalog import (
            RuleCatalog, RuleSnapshot, get_rule_catalog, initialize_default_rules
        )
        mapping = {
            'RuleCatalog': RuleCatalog,
            'RuleSnapshot': RuleSnapshot,
            'get_rule_catalog': get_rule_catalog,
            'initialize_default_rules': initialize_default_rules,
        }
        return mapping[name]

    if name in ('AIClassifier', 'ClassificationResult', 'BulkClassificationSummary',
                'get_ai_classifier'):
        from app.services.ai_classifier import (
            AIClassifier, ClassificationResult, BulkClassificationSummary, get_ai_classifier
        )
        mapping = {
            'AIClassifier': AIClassifier,
            'ClassificationResult': ClassificationResult,
            'BulkClassificationSummary': BulkClassificationSummary,
            'get_ai_classifier': get_ai_classifier,
        }
        return mapping[name]

    if name in ('COAParser', 'get_coa_parser'):
        from app.services.coa_parser import COAParser, get_coa_parser
        return COAParser if name == 'COAParser' else get_coa_parser

    if name in ('EligibilityAggregator', 'EligibilityResult', 'check_eligibility',
                'merge_shipping_restrictions'):
        from app.services.eligibility import (
            EligibilityAggregator, EligibilityResult, check_eligibility,
            merge_shipping_restrictions
        )
        mapping = {
            'EligibilityAggregator': EligibilityAggregator,
            'EligibilityResult': EligibilityResult,
            'check_eligibility': check_eligibility,
            'merge_shipping_restrictions': merge_shipping_restrictions,
        }
        return mapping[name]

    if name in ('ComplianceService', 'ComplianceViolation', 'get_compliance_service'):
        from app.services.compliance_service import (
            ComplianceService, ComplianceViolation, get_compliance_service
        )
        mapping = {
            'ComplianceService': ComplianceService,
            'ComplianceViolation': ComplianceViolation,
            'get_compliance_service': get_compliance_service,
        }
        return mapping[name]

    raise AttributeError(f"module 'app.services' has no attribute '{name}'")
