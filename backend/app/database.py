"""
Connexion SQLAlchemy utilisée par le backend `sql` du registre de présence.
Le moteur n'ouvre aucune connexion tant qu'aucune session n'est utilisée.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

from app.config import settings

engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()
