"""
TASKAUTH - Noyau d'authentification et RBAC

Modules:
    core: configuration, erreurs, primitives cryptographiques
    logging: logs structurés JSON avec masquage
    storage: dépôt transactionnel et données initiales
    auth: mots de passe, tokens JWE, tokens à usage unique
    rbac: agrégation, cache et vérification des permissions
    audit: événements d'audit
    notifications: emails de réinitialisation / configuration
    orchestrator: opérations d'authentification
"""

__version__ = "0.1.0"
