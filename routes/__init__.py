# routes/__init__.py
# One APIRouter per audience: auth, feedback (students), teacher, admin, analytics, profile.
