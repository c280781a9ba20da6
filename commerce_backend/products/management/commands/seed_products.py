from decimal import Decimal

from django.core.management.base import BaseCommand

from products.models import TIER_BASIC, TIER_FREE, TIER_PREMIUM, Product


class Command(BaseCommand):
    help = "Seed subscription products with free/basic/premium tiers"

    def handle(self, *args, **options):
        self.stdout.write(self.style.WARNING("Seeding subscription products..."))

        products_data = [
            (
                "Evolve Payroll & HR System",
                "Complete payroll & HR solution with NHIF, NSSF, KRA tax, and compliance reports.",
                {
                    TIER_FREE: (0, ["Up to 10 employees", "Basic payroll"]),
                    TIER_BASIC: (2500, ["Up to 50 employees", "NHIF & NSSF integration"]),
                    TIER_PREMIUM: (
                        5999,
                        ["Unlimited employees", "KRA compliance", "Advanced reports"],
                    ),
                },
            ),
            (
                "Evolve SACCO Manager Pro",
                "Loans, savings, dividends, and member management.",
                {
                    TIER_FREE: (0, ["Up to 100 members"]),
                    TIER_BASIC: (3999, ["Up to 500 members", "Loan management"]),
                    TIER_PREMIUM: (8999, ["Unlimited members", "SASRA compliance"]),
                },
            ),
            (
                "Evolve SchoolSoft Kenya",
                "Student records, fees, exams, and reporting.",
                {
                    TIER_FREE: (0, ["Up to 100 students"]),
                    TIER_BASIC: (3500, ["Up to 500 students", "Fee management"]),
                    TIER_PREMIUM: (7999, ["Unlimited students", "Parent portal"]),
                },
            ),
        ]

        created_count = 0

        for title, description, tiers in products_data:
            table = {
                name: {"price": str(Decimal(price)), "features": features}
                for name, (price, features) in tiers.items()
            }
            _, created = Product.objects.get_or_create(
                title=title,
                defaults={
                    "description": description,
                    "price": Decimal(tiers[TIER_BASIC][0]),
                    "is_subscription": True,
                    "subscription_tiers": table,
                },
            )
            if created:
                created_count += 1

        self.stdout.write(
            self.style.SUCCESS(f"Subscription products seeded ({created_count} new).")
        )
