# ReplyGuard - Review Reconciliation & Compliance-Guarded Publication
# ====================================================================
# Syncs reviews from a business profile, drafts replies with an LLM and only
# lets text out after a compliance and quality gate. Layered architecture:
#
# ARCHITECTURE LAYERS:
# - Presentation:   FastAPI app (web/) and batch runner (run_sync.py)
# - Application:    Use cases: reconciliation, publication, audit, reminders
# - Domain:         Pure business logic (no external dependencies)
# - Infrastructure: External services (review platform, LLM, SQLite, config)
#
# Infrastructure adapters sit behind abstract interfaces, so the Google or
# OpenRouter clients can be swapped without touching the domain rules.
