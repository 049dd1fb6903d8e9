import os
from pathlib import Path

from dotenv import load_dotenv

# .env na raiz do projeto
env_path = Path(__file__).resolve().parent.parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


# =========================
# BANCO
# =========================

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./booking.db")
DB_ECHO = os.getenv("DB_ECHO", "false").lower() == "true"
# sqlite: quanto tempo um escritor espera pelo lock antes de falhar
SQLITE_BUSY_TIMEOUT = float(os.getenv("SQLITE_BUSY_TIMEOUT", "30"))


# =========================
# JWT
# =========================

SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn("SECRET_KEY não configurada, usando chave de desenvolvimento", RuntimeWarning, stacklevel=2)
    SECRET_KEY = "dev-secret-change-me"
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))


# =========================
# AGENDA
# =========================

# fuso do estabelecimento: agenda, expediente e bloqueios ficam nele, sem tzinfo
BUSINESS_TIMEZONE = os.getenv("BUSINESS_TIMEZONE", "UTC")

# passo dos slots no calendário
SLOT_STEP_MINUTES = int(os.getenv("SLOT_STEP_MINUTES", "15"))

# cliente só cancela até X horas antes
CANCEL_MIN_HOURS_BEFORE = int(os.getenv("CANCEL_MIN_HOURS_BEFORE", "24"))

# quantas vezes a transição de status tenta de novo quando perde a corrida
TRANSITION_MAX_ATTEMPTS = int(os.getenv("TRANSITION_MAX_ATTEMPTS", "3"))

# lembrete padrão: agendamentos que começam daqui a X horas
REMINDER_LEAD_HOURS = int(os.getenv("REMINDER_LEAD_HOURS", "24"))
# lembrete do próprio dia: X horas antes
DAY_OF_REMINDER_HOURS = int(os.getenv("DAY_OF_REMINDER_HOURS", "2"))


# =========================
# DIRETÓRIO DE CLIENTES
# =========================

# "sync" reconcilia na mesma requisição, "background" agenda depois da resposta
RECONCILE_MODE = os.getenv("RECONCILE_MODE", "sync").lower()
RECONCILE_MAX_ATTEMPTS = int(os.getenv("RECONCILE_MAX_ATTEMPTS", "3"))
RECONCILE_BACKOFF_SECONDS = float(os.getenv("RECONCILE_BACKOFF_SECONDS", "0.2"))


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
