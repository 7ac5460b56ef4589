# Domain Layer
# ============
# Pure business rules with no external dependencies:
# - models.py: reviews, violations, audit events, reply evidence
# - compliance_guard.py: PHI/policy detection and sanitization
# - reply_quality.py: structural contract for generated replies
# - review_merge.py: precedence rules for folding external reviews into local state
