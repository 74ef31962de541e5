"""
Demo tenant seed script.

Creates a fresh tenant with an admin login and ~90 days of DevRel data so the
dashboard, funnel and ROI screens have something to show.

SAFE TO RE-RUN:
- No DELETE operations, only INSERTs
- Every run creates a NEW tenant (existing tenants are never touched)

Shape of the data:
- 120 developers across 8 organizations
- Funnel decay: most developers only click, fewer attend/sign up, few post/star
- 4 campaigns with budget lines; activities attributed to them with value

Usage:
    cd backend
    python -m devcrm.seed_demo
"""

import random
import uuid
from datetime import date, datetime, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from devcrm.database import SessionLocal
from devcrm import models
from devcrm.security import get_password_hash
from devcrm.services.activity_types import seed_default_activity_types, seed_funnel_stages


# =============================================================================
# CONFIGURATION
# =============================================================================

TENANT_NAME = "Demo DevRel Team"
ADMIN_PASSWORD = "demo-password"
CURRENCY = "JPY"
DAYS = 90
DEVELOPER_COUNT = 120

# Probability that a developer reaches each step of the funnel
STEP_PROBABILITY = [
    ("click", 1.0),
    ("attend", 0.55),
    ("signup", 0.30),
    ("post", 0.10),
    ("star", 0.08),
]

ORGANIZATIONS = [
    ("Acme Cloud", "acme.dev"),
    ("Globex Data", "globex.io"),
    ("Initech Labs", "initech.com"),
    ("Umbrella Systems", "umbrella.tech"),
    ("Hooli", "hooli.xyz"),
    ("Stark Robotics", "stark.ai"),
    ("Wayne Compute", "wayne.cloud"),
    ("Tyrell AI", "tyrell.jp"),
]

CAMPAIGNS = [
    {"name": "Tokyo Meetup Series", "channel": "event", "budget": [("event", 350000), ("swag", 80000)]},
    {"name": "Docs Ads Q3", "channel": "ad", "budget": [("ad", 500000)]},
    {"name": "Hackathon Sponsorship", "channel": "sponsorship", "budget": [("event", 1200000)]},
    {"name": "Newsletter Push", "channel": "email", "budget": []},
]

FIRST_NAMES = ["Aiko", "Ben", "Chen", "Dana", "Emi", "Farid", "Gina", "Hiro", "Ines", "Jon", "Kenta", "Lena"]
LAST_NAMES = ["Sato", "Miller", "Wang", "Kim", "Tanaka", "Garcia", "Ito", "Novak", "Silva", "Yamada"]


# =============================================================================
# HELPERS
# =============================================================================

def random_moment(start: datetime, days: int) -> datetime:
    return start + timedelta(days=random.randint(0, days - 1), minutes=random.randint(0, 24 * 60 - 1))


def create_tenant(db: Session) -> tuple:
    """Create tenant, admin user and the default activity types."""
    tenant = models.Tenant(id=uuid.uuid4(), name=TENANT_NAME)
    db.add(tenant)
    db.flush()

    email = f"admin+{tenant.id.hex[:8]}@example.com"
    user = models.User(
        tenant_id=tenant.id,
        email=email,
        display_name="Demo Admin",
        role=models.UserRoleEnum.admin,
    )
    db.add(user)
    db.flush()
    db.add(models.AuthCredential(user_id=user.id, password_hash=get_password_hash(ADMIN_PASSWORD)))

    seed_default_activity_types(db, tenant.id, commit=False)
    print(f"   Created tenant: {tenant.name} ({tenant.id})")
    print(f"   Admin login: {email} / {ADMIN_PASSWORD}")
    return tenant, user


def create_developers(db: Session, tenant_id: uuid.UUID) -> list:
    orgs = []
    for name, domain in ORGANIZATIONS:
        org = models.Organization(tenant_id=tenant_id, name=name, domain_primary=domain)
        db.add(org)
        orgs.append(org)
    db.flush()

    developers = []
    for i in range(DEVELOPER_COUNT):
        org = random.choice(orgs)
        first, last = random.choice(FIRST_NAMES), random.choice(LAST_NAMES)
        email = f"{first}.{last}.{i}@{org.domain_primary}".lower()
        developer = models.Developer(
            tenant_id=tenant_id,
            display_name=f"{first} {last}",
            primary_email=email,
            org_id=org.id,
            tags=random.sample(["python", "go", "rust", "ml", "frontend", "infra"], k=2),
        )
        db.add(developer)
        db.flush()
        db.add(
            models.DeveloperIdentifier(
                tenant_id=tenant_id,
                developer_id=developer.id,
                kind=models.IdentifierKindEnum.email,
                value_normalized=email,
                confidence=Decimal("1.0"),
            )
        )
        developers.append(developer)
    print(f"   Created {len(orgs)} organizations and {len(developers)} developers")
    return developers


def create_campaigns(db: Session, tenant_id: uuid.UUID, start: date) -> list:
    campaigns = []
    for campaign_def in CAMPAIGNS:
        campaign = models.Campaign(
            tenant_id=tenant_id,
            name=campaign_def["name"],
            channel=campaign_def["channel"],
            start_date=start,
            end_date=start + timedelta(days=DAYS - 1),
            budget_total=sum((Decimal(amount) for _, amount in campaign_def["budget"]), Decimal("0")) or None,
        )
        db.add(campaign)
        db.flush()
        for category, amount in campaign_def["budget"]:
            db.add(
                models.Budget(
                    tenant_id=tenant_id,
                    campaign_id=campaign.id,
                    category=category,
                    amount=Decimal(amount),
                    currency=CURRENCY,
                    spent_at=start + timedelta(days=random.randint(0, 14)),
                    source="seed",
                )
            )
        campaigns.append(campaign)
    print(f"   Created {len(campaigns)} campaigns")
    return campaigns


def create_activities(db: Session, tenant_id: uuid.UUID, developers: list, campaigns: list, start: datetime) -> int:
    """Walk every developer down the funnel; later steps happen after earlier ones."""
    count = 0
    for developer in developers:
        moment = random_moment(start, DAYS // 2)
        campaign = random.choice(campaigns)
        for action, probability in STEP_PROBABILITY:
            if random.random() > probability:
                break
            moment = moment + timedelta(days=random.randint(0, 7), hours=random.randint(0, 23))
            value = Decimal(random.choice([0, 5000, 12000, 30000])) if action == "signup" else None
            activity = models.Activity(
                tenant_id=tenant_id,
                developer_id=developer.id,
                action=action,
                occurred_at=moment,
                source="seed",
                value=value,
                dedup_key=f"seed:{developer.id}:{action}",
            )
            db.add(activity)
            db.flush()
            if random.random() < 0.6:
                db.add(
                    models.ActivityCampaign(
                        tenant_id=tenant_id,
                        activity_id=activity.id,
                        campaign_id=campaign.id,
                        weight=Decimal("1.0"),
                    )
                )
            count += 1
    print(f"   Created {count:,} activities")
    return count


# =============================================================================
# MAIN
# =============================================================================

def seed_demo():
    """Main seeding function for the demo tenant."""

    print("\n" + "=" * 70)
    print(" DEMO TENANT SEED SCRIPT")
    print("=" * 70 + "\n")

    today = date.today()
    start_day = today - timedelta(days=DAYS)
    start = datetime.combine(start_day, datetime.min.time())

    with SessionLocal() as db:
        try:
            print("1. Ensuring funnel stages...")
            seed_funnel_stages(db)

            print("\n2. Creating tenant...")
            tenant, user = create_tenant(db)

            print("\n3. Creating organizations and developers...")
            developers = create_developers(db, tenant.id)

            print("\n4. Creating campaigns...")
            campaigns = create_campaigns(db, tenant.id, start_day)

            print("\n5. Creating activities...")
            activity_count = create_activities(db, tenant.id, developers, campaigns, start)

            print("\n6. Committing to database...")
            db.commit()

            print("\n" + "=" * 70)
            print(" SEED COMPLETE!")
            print("=" * 70)
            print(f"   Tenant ID: {tenant.id}")
            print(f"   Admin: {user.email}")
            print(f"   Developers: {len(developers)}")
            print(f"   Activities: {activity_count:,}")
            print("=" * 70 + "\n")

            return tenant.id

        except Exception as e:
            db.rollback()
            print(f"\n ERROR: {e}")
            raise


if __name__ == "__main__":
    seed_demo()
