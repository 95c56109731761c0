"""Seed database with initial pricing reference data."""

import asyncio
from datetime import date
from decimal import Decimal

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from src.config import settings
from src.models.base import Base
from src.models.pricing import InsuranceDegree, PointRate, PriceList, PricingFactor, PricingRule
from src.models.procedure import Procedure


PROCEDURES = [
    {"system_code": "PRC-0001", "code": "99213", "name_en": "Outpatient consultation", "reference_price": Decimal("150.00")},
    {"system_code": "PRC-0002", "code": "70450", "name_en": "CT head without contrast", "reference_price": Decimal("900.00"), "requires_authorization": True},
    {"system_code": "PRC-0003", "code": "47562", "name_en": "Laparoscopic cholecystectomy", "reference_price": Decimal("12000.00"), "is_surgical": True, "requires_authorization": True},
]

PRICE_LISTS = [
    {"code": "PL-GEN", "name_en": "General price list", "provider_type": "HOSPITAL", "is_default": True},
    {"code": "PL-CLN", "name_en": "Clinic price list", "provider_type": "CLINIC"},
]

PRICING_FACTORS = [
    {"key": "age", "name_en": "Patient age", "data_type": "INTEGER"},
    {"key": "gender", "name_en": "Gender", "data_type": "SELECT", "allowed_values": '["MALE", "FEMALE"]'},
    {"key": "is_emergency", "name_en": "Emergency case", "data_type": "BOOLEAN"},
    {"key": "room_type", "name_en": "Room type", "data_type": "SELECT", "allowed_values": '["WARD", "SEMI_PRIVATE", "PRIVATE"]'},
    {"key": "anesthesia_minutes", "name_en": "Anesthesia duration (minutes)", "data_type": "NUMBER"},
]

INSURANCE_DEGREES = [
    {"code": "A", "name_en": "First degree"},
    {"code": "B", "name_en": "Second degree"},
]

SAMPLE_RULES = [
    {
        "procedure": "PRC-0001",
        "priority": 1,
        "rule_json": {
            "conditions": [{"factor": "age", "operator": "GREATER_THAN_OR_EQUALS", "value": 65}],
            "pricing": {"mode": "FIXED", "fixedPrice": 120},
        },
    },
    {
        "procedure": "PRC-0001",
        "priority": 10,
        "rule_json": {
            "conditions": [],
            "pricing": {"mode": "FIXED", "fixedPrice": 150},
            "adjustments": [
                {"type": "PERCENT", "factorKey": "is_emergency", "cases": {"true": 25}},
            ],
        },
    },
    {
        "procedure": "PRC-0003",
        "priority": 1,
        "rule_json": {
            "conditions": [],
            "pricing": {"mode": "POINTS", "basePoints": 800, "minPrice": 8000, "maxPrice": 20000},
            "adjustments": [
                {"type": "ADD", "factorKey": "room_type", "cases": {"PRIVATE": 1500, "SEMI_PRIVATE": 700}},
            ],
        },
    },
]


async def seed():
    """Seed the database with reference data."""
    engine = create_async_engine(settings.database_url)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession)
    valid_from = date(date.today().year, 1, 1)

    async with session_factory() as session:
        procedure_map = {}
        for data in PROCEDURES:
            procedure = Procedure(**data)
            session.add(procedure)
            await session.flush()
            procedure_map[data["system_code"]] = procedure.id
            print(f"  + Procedure: {data['name_en']}")

        price_list_ids = []
        for data in PRICE_LISTS:
            price_list = PriceList(**data, valid_from=valid_from)
            session.add(price_list)
            await session.flush()
            price_list_ids.append(price_list.id)
            print(f"  + Price list: {data['code']}")

        for data in PRICING_FACTORS:
            session.add(PricingFactor(**data))
            print(f"  + Factor: {data['key']}")

        for data in INSURANCE_DEGREES:
            degree = InsuranceDegree(**data, effective_from=valid_from)
            session.add(degree)
            await session.flush()
            session.add(
                PointRate(
                    insurance_degree_id=degree.id,
                    point_price=Decimal("12.5") if data["code"] == "A" else Decimal("10"),
                    valid_from=valid_from,
                    created_by="seed",
                )
            )
            print(f"  + Insurance degree: {data['code']} (with point rate)")

        for data in SAMPLE_RULES:
            session.add(
                PricingRule(
                    procedure_id=procedure_map[data["procedure"]],
                    price_list_id=price_list_ids[0],
                    priority=data["priority"],
                    rule_json=data["rule_json"],
                    valid_from=valid_from,
                )
            )
            print(f"  + Rule: {data['procedure']} priority {data['priority']}")

        await session.commit()

    await engine.dispose()
    print("\nSeed completed!")


if __name__ == "__main__":
    asyncio.run(seed())
