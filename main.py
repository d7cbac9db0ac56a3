from membercard import create_app
from membercard.lifecycle import generate_id, generate_token
from membercard.models import Member, Credential, CREDENTIAL_ACTIVE
from membercard.store import get_store
from datetime import date
import os

app = create_app()


DEMO_MEMBERS = [
    {
        "first_name": "Candelario", "last_name": "Aparicio Aguilar", "role": "Vocal",
        "curp": "AAAC620202HMNPGN09", "postal_code": "58116", "emergency_contact": "443-000-0001",
        "street": "Priv. de Pejo", "house_number": "Mnz 58 Lt 9", "colony": "Presa de los Reyes",
    },
    {
        "first_name": "Ramiro", "last_name": "Ibarra Garcia", "role": "Vocal",
        "curp": "IAGR770611HMNBRM05", "postal_code": "58115", "emergency_contact": "443-000-0002",
        "street": "Valle de Bravo", "house_number": "Mz 39 L19", "colony": "Valle de los Reyes",
    },
    {
        "first_name": "Canuto", "last_name": "Valdovinos Saucedo", "role": "Vicepresidente", "blood_type": "O+",
        "curp": "VASC510119HGRLCN15", "postal_code": "58148", "emergency_contact": "443-000-0003",
        "street": "Jose del Rio", "house_number": "208", "colony": "Jose Maria Morelos",
    },
    {
        "first_name": "Jose Luis", "last_name": "Roman Torres", "role": "Presidente", "blood_type": "O+",
        "curp": "ROTL680923HMNMRS13", "postal_code": "58148", "emergency_contact": "443-476-7856",
        "street": "Mariano Torres Aranda", "house_number": "114", "colony": "Jose Maria Morelos",
    },
]


def seed_demo_members():
    """Add demo members with an active credential (only if the member table is empty)."""
    store = get_store()
    if store.list_members():
        app.logger.info("Members already present, skipping demo data.")
        return

    for index, data in enumerate(DEMO_MEMBERS, start=1):
        member = Member(
            id=generate_id(),
            join_date=date(2025, 11, 23),
            city="Morelia, Michoacán",
            photo_url=f"https://picsum.photos/200/200?random={index}",
            **data,
        )
        member.credentials = [
            Credential(
                id=generate_id(),
                token=generate_token(),
                issue_date=date(2024, 11, 8),
                expiration_date=date(2030, 11, 8),
                status=CREDENTIAL_ACTIVE,
            )
        ]
        store.upsert_member(member)

    app.logger.info(f"Seeded {len(DEMO_MEMBERS)} demo members.")


# Seed under Gunicorn too, when asked to
if app.config['SEED_DEMO_DATA']:
    with app.app_context():
        seed_demo_members()


if __name__ == "__main__":
    port = int(os.environ.get('PORT', 4000))
    app.run(host='0.0.0.0', port=port, debug=os.environ.get('FLASK_DEBUG', 'false').lower() == 'true')
