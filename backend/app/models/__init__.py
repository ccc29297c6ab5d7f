# Importe tous les modèles pour enregistrer leurs tables dans Base.metadata
# avant que SQLAlchemy tente de résoudre les clés étrangères inter-modèles.
# user.py doit être chargé avant admin_security.py (FK admin_security.user_id → users.id).

from app.models.user import User  # noqa: F401  (doit précéder admin_security)
from app.models.admin_security import AdminSecurity  # noqa: F401
from app.models.login_audit import LoginAudit  # noqa: F401
