#!/usr/bin/env python3
"""
Database seeding script for development and testing.
Creates an admin, two clients, their projects and an assistance request,
and prints a development access token for each profile.
"""

import asyncio
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

# Add parent directory to path to import our modules
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from projectflow.database import AsyncSessionLocal, create_tables
from projectflow.models import AssistanceRequest, Profile, Project
from projectflow.services.auth_service import AuthSessionService


async def seed_data():
    """Seed the database with sample data"""
    async with AsyncSessionLocal() as session:
        try:
            # Create profiles
            admin = Profile(
                id="a0000000-0000-4000-8000-000000000001",
                role="admin",
                email="admin@projectflow.com",
                name="Carla Mendes",
                phone="+55 11 4000-1000",
            )
            client1 = Profile(
                id="c0000000-0000-4000-8000-000000000001",
                role="client",
                email="joao.silva@example.com",
                name="João Silva",
                phone="+55 11 98888-1111",
            )
            client2 = Profile(
                id="c0000000-0000-4000-8000-000000000002",
                role="client",
                email="maria.souza@example.com",
                name="Maria Souza",
            )
            session.add_all([admin, client1, client2])
            await session.flush()
            print("✓ Created profiles")

            # Create projects
            project1 = Project(
                name="Cozinha Planejada",
                description="Armários de cozinha em MDF branco com bancada de granito",
                client_uid=client1.id,
                status="Produção Iniciada",
                price=Decimal("18500.00"),
                payment_condition="50% entrada, 50% na entrega",
                delivery_date=date(2025, 3, 15),
                files=[],
            )
            project2 = Project(
                name="Closet Suíte Master",
                description="Closet com portas de vidro reflecta",
                client_uid=client1.id,
                status="Pagamento Feito",
                price=Decimal("9200.00"),
                payment_condition="10x sem juros",
                files=[],
            )
            project3 = Project(
                name="Home Office",
                description="Estante e mesa suspensa",
                client_uid=client2.id,
                status="Concluído",
                price=Decimal("6400.00"),
                payment_condition="À vista",
                delivery_date=date(2024, 11, 2),
                files=[],
            )
            session.add_all([project1, project2, project3])
            await session.flush()
            print("✓ Created projects")

            # Create assistance requests
            request1 = AssistanceRequest(
                project_id=project3.id,
                client_uid=client2.id,
                client_name=client2.name,
                description="Porta da estante desalinhada",
                status="Aberto",
                response="",
                photos=[],
            )
            session.add(request1)
            await session.flush()
            print("✓ Created assistance requests")

            await session.commit()
            print("\n✅ Database seeding completed successfully!")

            # Print summary
            print("\nSummary:")
            print(f"  - Profiles: 3")
            print(f"  - Projects: 3")
            print(f"  - Assistance requests: 1")

            print("\nDevelopment access tokens (set SESSION_ACCESS_TOKEN):")
            for profile in (admin, client1, client2):
                token = AuthSessionService.create_access_token(profile.id, profile.email)
                print(f"  - {profile.role} {profile.email}: {token}")

        except Exception as e:
            await session.rollback()
            print(f"❌ Error seeding database: {e}")
            raise


async def main():
    """Main function"""
    print("Starting database seeding...\n")

    # Creates missing tables; existing ones are left alone
    await create_tables()
    print("✓ Database tables created")

    await seed_data()


if __name__ == "__main__":
    asyncio.run(main())
