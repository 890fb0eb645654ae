"""Auth service: Azure AD token validation for the Access Layer."""
