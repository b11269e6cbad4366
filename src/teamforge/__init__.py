"""
TeamForge — team provisioning and membership reconciliation.

Mirrors locally owned teams into external collaboration systems (directory,
wiki, groupware, VCS, chat) and keeps event sub-teams in sync with attendance
and an external workshop service.
"""

__version__ = "0.1.0"
