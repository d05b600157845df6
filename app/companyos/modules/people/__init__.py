"""
People module.

- Person directory with manager hierarchy and lifecycle status
- Teams (nested) and organizational roles
- Per-org settings that wire onboarding/offboarding to workflow templates
"""
