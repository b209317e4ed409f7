"""
CaseBridge - Legal Case Management Backend
==========================================

Backend for a law firm's internal staff portal and its client portal:
case intake, matters, pipelines, tasks, court reports, documents,
messaging, notifications and billing.
"""

__version__ = "1.0.0"
