# Application Layer
# =================
# Use cases that orchestrate domain rules and infrastructure collaborators:
# - review_reconciler.py: merge fetched reviews into local state
# - audit_trail.py: hash-only ledger of approve/publish actions
# - publication.py: compliance-guarded approval and publishing
# - approval_reminders.py: reminders/escalation for reviews awaiting approval
