"""
GraphAppToolkit: Entra ID app registration automation for Microsoft 365.

Publishes certificate-authenticated app registrations for three scenarios
(Graph email sending, M365 tenant auditing, Intune/MEM policy management),
stores their connection details in a local secret vault, and sends mail
through a published email app.
"""

__version__ = "0.4.0"
