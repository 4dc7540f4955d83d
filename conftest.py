"""
Configuração global de testes pytest
"""
import os
import sys

# Raiz do projeto no PYTHONPATH antes da coleta
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, PROJECT_ROOT)

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DB_URL", "sqlite://")
