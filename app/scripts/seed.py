import os
from datetime import time, datetime, timedelta
from sqlmodel import Session, select

from app.core.clock import business_now
from app.core.security import get_password_hash
from app.database import create_db_and_tables, engine
from app.models.user import User
from app.models.service import Service
from app.models.business_hours import BusinessHours
from app.models.time_block import TimeBlock


ADMIN_EMAIL = os.getenv("SEED_ADMIN_EMAIL", "admin@studio.com")
ADMIN_PASSWORD = os.getenv("SEED_ADMIN_PASSWORD", "troque-esta-senha")

# seg-sex manhã/tarde, sábado só manhã, domingo fechado
WEEKDAY = [
    {"name": "manhã", "start": "09:00", "end": "12:00"},
    {"name": "tarde", "start": "13:00", "end": "18:00"},
]
SATURDAY = [{"name": "manhã", "start": "09:00", "end": "13:00"}]


def main():
    create_db_and_tables()

    with Session(engine) as session:
        # 1) admin
        admin = session.exec(select(User).where(User.email == ADMIN_EMAIL)).first()
        if not admin:
            admin = User(
                name="Administrador",
                email=ADMIN_EMAIL,
                role="admin",
                password_hash=get_password_hash(ADMIN_PASSWORD),
            )
            session.add(admin)

        # 2) expediente
        for weekday in range(7):
            intervals = WEEKDAY if weekday < 5 else SATURDAY if weekday == 5 else []
            row = session.exec(select(BusinessHours).where(BusinessHours.weekday == weekday)).first()
            if row is None:
                row = BusinessHours(weekday=weekday)
            row.is_closed = not intervals
            row.intervals = intervals
            session.add(row)

        # 3) serviços de teste (se não existir)
        if not session.exec(select(Service)).first():
            session.add_all(
                [
                    Service(name="Limpeza de pele", duration_minutes=60, buffer_minutes=15, price_cents=18000, deposit_cents=5000),
                    Service(name="Design de sobrancelha", duration_minutes=30, buffer_minutes=10, price_cents=6000),
                    Service(name="Peeling", duration_minutes=45, buffer_minutes=15, price_cents=22000, deposit_cents=5000),
                ]
            )

        # 4) bloqueio de exemplo: reunião semanal a partir de amanhã 16:00-17:00
        tomorrow = (business_now() + timedelta(days=1)).date()
        block_start = datetime.combine(tomorrow, time(16, 0))
        exists_block = session.exec(select(TimeBlock).where(TimeBlock.title == "Reunião semanal")).first()
        if not exists_block:
            session.add(
                TimeBlock(
                    title="Reunião semanal",
                    start_time=block_start,
                    end_time=block_start + timedelta(hours=1),
                    is_recurring=True,
                    recurrence_pattern="weekly",
                )
            )

        session.commit()

        print("✅ Seed concluído!")
        print(f"Admin: {ADMIN_EMAIL}")
        print("Expediente: seg-sex 09-12/13-18, sáb 09-13, domingo fechado")
        print("Serviços: Limpeza de pele/Design de sobrancelha/Peeling (se não existiam)")
        print("Bloqueio: reunião semanal 16:00-17:00 (se não existia)")


if __name__ == "__main__":
    main()
