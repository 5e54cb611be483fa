from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Importa os modelos para que sejam registrados com a Base
from household_auth.models import user, trusted_device, revoked_token, oauth_account  # noqa: E402,F401
