"""Authentication module (identity provider + forced re-login).

Services:
    - AuthContext: Token/user access and the unauthorized / server-offline
      failure paths.
"""
