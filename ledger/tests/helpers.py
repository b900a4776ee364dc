from datetime import date
from decimal import Decimal

from ledger.models import Client, Firm, Lawyer, Matter
from ledger.services import advances, capture


class LedgerFixtures:
    """Builds a firm with one client, matter and lawyer billed in USD."""

    def make_firm(self, code="acme-law", currency="USD"):
        return Firm.objects.create(code=code, name=f"{code} LLP", default_currency=currency)

    def make_world(self):
        self.firm = self.make_firm()
        self.client_obj = Client.objects.create(firm=self.firm, client_number="CLT0001", name="Acme Corporation")
        self.matter = Matter.objects.create(
            firm=self.firm,
            client=self.client_obj,
            matter_number="2026-0001",
            title="Commercial Lease Dispute",
            currency="USD",
        )
        self.lawyer = Lawyer.objects.create(
            firm=self.firm,
            employee_id="ATT001",
            first_name="Sarah",
            last_name="Johnson",
            hourly_rate=Decimal("200.00"),
            hourly_rate_currency="USD",
        )

    def deposit(self, amount="5000.00", advance_type="client_retainer", currency="USD",
                date_received=date(2026, 1, 5), **kwargs):
        if advance_type == "lawyer_advance":
            kwargs.setdefault("lawyer", self.lawyer)
        else:
            kwargs.setdefault("client", self.client_obj)
        return advances.deposit(
            firm=self.firm,
            advance_type=advance_type,
            amount=Decimal(amount),
            currency=currency,
            date_received=date_received,
            **kwargs,
        )

    def log_time(self, minutes=120, entry_date=date(2026, 1, 6), **kwargs):
        kwargs.setdefault("lawyer", self.lawyer)
        kwargs.setdefault("matter", self.matter)
        return capture.record_time_entry(
            firm=self.firm,
            date=entry_date,
            minutes=minutes,
            narrative=kwargs.pop("narrative", "Review lease and draft memo"),
            **kwargs,
        )

    def log_expense(self, amount="150.00", **kwargs):
        kwargs.setdefault("matter", self.matter)
        expense, _ = capture.record_expense(
            firm=self.firm,
            date=kwargs.pop("date", date(2026, 1, 7)),
            category=kwargs.pop("category", "Filing Fees"),
            amount=Decimal(amount),
            **kwargs,
        )
        return expense
