# Infrastructure Layer
# ====================
# Contains all external service integrations:
# - google/: Google Business Profile review source and publisher
# - llm/: OpenRouter LLM review analysis
# - persistence/: SQLite repository for reviews and audit events
# - notifications.py: reminder delivery
# - rate_limit.py: token bucket pacing for publish calls
# - config/: Environment and settings management
#
# This layer can be replaced entirely without affecting domain/application layers.
