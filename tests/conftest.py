import os
import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# ---- テスト用DBパス（db.py の import より前に設定する）----
_TMP_DIR = Path(tempfile.mkdtemp(prefix="studio_app_"))
os.environ["APP_DB_PATH"] = str(_TMP_DIR / "test_studio.db")

ACTOR_ID = "7d0c2b8e-2a4f-4a55-9c77-0f7e0c5b3a11"


@pytest.fixture(scope="session")
def app_module():
    import main

    return main


@pytest.fixture()
def client(app_module):
    with TestClient(app_module.app) as c:
        c.headers.update({"X-Actor-Id": ACTOR_ID})
        yield c


@pytest.fixture()
def db_session(app_module):
    from db import SessionLocal

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def clean_db(app_module, db_session):
    # 各テスト前にテーブルを全消し（順序注意：audit -> assignments -> 参照系）
    from sqlalchemy import delete
    from orm import AuditLogORM, AssignmentORM, EquipmentORM, CategoryORM, EmployeeORM, ClientORM

    db_session.execute(delete(AuditLogORM))
    db_session.execute(delete(AssignmentORM))
    db_session.execute(delete(EquipmentORM))
    db_session.execute(delete(CategoryORM))
    db_session.execute(delete(EmployeeORM))
    db_session.execute(delete(ClientORM))
    db_session.commit()
    yield


@pytest.fixture()
def studio(db_session):
    """Two cameras, two employees and one client."""
    import crud

    return {
        "cam1": crud.create_equipment(db_session, name="Canon EOS R5", serial_number="CAM-1", category="Camera"),
        "cam2": crud.create_equipment(db_session, name="Sony A7 IV", serial_number="CAM-2", category="Camera"),
        "e1": crud.create_employee(db_session, email="e1@studio.test", full_name="Ava Stone"),
        "e2": crud.create_employee(db_session, email="e2@studio.test", full_name="Ben Cole"),
        "client": crud.create_client(db_session, name="Northwind Weddings", email="hi@northwind.test"),
    }
