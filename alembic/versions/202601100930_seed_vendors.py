"""seed default vendors

Revision ID: 202601100930
Revises: 202601100900
Create Date: 2026-01-10 09:30:00.000000

"""

from datetime import datetime

from alembic import op
import sqlalchemy as sa


revision = "202601100930"
down_revision = "202601100900"
branch_labels = None
depends_on = None

DEFAULT_VENDORS = {
    "care": ["Else", "Epilation", "Haircut", "Health", "Nail"],
    "clothing": ["Bohdan", "Both", "Mariia"],
    "eating_out": ["Gyros", "Restaurant"],
    "else": ["Else", "Flowers", "Gift", "Vabali"],
    "food_store": ["Aldi", "Else", "Kaufland", "Lidl", "MixMarkt"],
    "household": ["Amazon", "Budni", "DM", "Else"],
    "living": ["Flat Rent", "Internet", "ParkSpot", "Parking", "Rundfunkbeitrag"],
    "salary": ["Careem", "Else", "Moka"],
    "subscriptions": [
        "Apple",
        "Claude",
        "Fitness Studio",
        "Haspa",
        "Netflix",
        "Patreon",
        "Telekom",
        "Teutonia",
        "Urban Sport",
    ],
    "transport": ["DB", "Else", "Flixbus", "HVV"],
    "tourism": ["Tourism"],
}

vendors = sa.table(
    "vendors",
    sa.column("name", sa.String),
    sa.column("type", sa.String),
    sa.column("created_at", sa.DateTime),
    sa.column("updated_at", sa.DateTime),
)


def upgrade():
    now = datetime.utcnow()
    op.bulk_insert(
        vendors,
        [
            {"name": name, "type": vendor_type, "created_at": now, "updated_at": now}
            for vendor_type, names in DEFAULT_VENDORS.items()
            for name in names
        ],
    )


def downgrade():
    bind = op.get_bind()
    for vendor_type, names in DEFAULT_VENDORS.items():
        bind.execute(
            vendors.delete().where(
                vendors.c.type == vendor_type, vendors.c.name.in_(names)
            )
        )
