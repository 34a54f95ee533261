"""
connectors — integration layer for the dashboard's external services.

Provides:
  • OAuth2 auth-URL generation, callback handling and token refresh
    (Google Calendar, Spotify)
  • API-key clients (Monday.com, Redmine)
  • AES encryption of secrets at rest
  • A TTL cache for the API-key providers
  • Normalization into the dashboard's canonical shapes

Routes talk to ``IntegrationFacade`` only.
"""
