"""Preference record lifecycle and onboarding detection."""
