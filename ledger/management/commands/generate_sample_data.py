from django.core.management.base import BaseCommand
from django.utils import timezone
from datetime import timedelta
from decimal import Decimal
import random

from ledger.exceptions import LedgerError
from ledger.models import (
    Firm, Client, Lawyer, Matter, TimeEntry, Expense,
    Advance, AdvanceMovement, Invoice, InvoiceLineItem, Payment
)
from ledger.services import advances, capture, invoices


class Command(BaseCommand):
    help = 'Generate sample clients, work, advances and invoices for one firm'

    def add_arguments(self, parser):
        parser.add_argument('--firm', type=str, default='demo', help='Firm code to (re)create')
        parser.add_argument('--seed', type=int, help='Random seed for repeatable data')

    def handle(self, *args, **options):
        if options['seed'] is not None:
            random.seed(options['seed'])

        self.stdout.write('Clearing existing data...')
        firm = self.reset_firm(options['firm'])

        self.stdout.write('Generating lawyers...')
        lawyers = self.create_lawyers(firm)

        self.stdout.write('Generating clients and matters...')
        matters = self.create_matters(firm, self.create_clients(firm))

        self.stdout.write('Generating advances...')
        self.create_advances(firm, matters, lawyers)

        self.stdout.write('Generating time entries...')
        self.create_time_entries(firm, matters, lawyers)

        self.stdout.write('Generating expenses...')
        self.create_expenses(firm, matters, lawyers)

        self.stdout.write('Generating invoices and payments...')
        created = self.create_invoices(firm, matters)

        self.stdout.write(self.style.SUCCESS(
            f'Successfully generated sample data for {firm.code}: {created} invoice(s)'
        ))

    def reset_firm(self, code):
        firm = Firm.objects.filter(code=code).first()
        if firm is not None:
            # Clear in reverse order of dependencies
            Payment.objects.filter(firm=firm).delete()
            InvoiceLineItem.objects.filter(firm=firm).delete()
            AdvanceMovement.objects.filter(firm=firm).delete()
            TimeEntry.objects.filter(firm=firm).delete()
            Expense.objects.filter(firm=firm).delete()
            Invoice.objects.filter(firm=firm).delete()
            Advance.objects.filter(firm=firm).delete()
            Matter.objects.filter(firm=firm).delete()
            Lawyer.objects.filter(firm=firm).delete()
            Client.objects.filter(firm=firm).delete()
            firm.delete()
        return Firm.objects.create(code=code, name=f'{code.title()} Legal LLP', default_currency='USD')

    def create_lawyers(self, firm):
        lawyers_data = [
            ('ATT001', 'Sarah', 'Johnson', 450),
            ('ATT002', 'Michael', 'Chen', 425),
            ('ATT003', 'Emily', 'Rodriguez', 350),
            ('ATT004', 'David', 'Thompson', 275),
            ('ATT005', 'Jessica', 'Williams', 225),
        ]
        return [
            Lawyer.objects.create(
                firm=firm,
                employee_id=emp_id,
                first_name=first,
                last_name=last,
                hourly_rate=Decimal(rate),
                hourly_rate_currency='USD',
            )
            for emp_id, first, last, rate in lawyers_data
        ]

    def create_clients(self, firm):
        names = [
            'Acme Corporation', 'TechStart Inc.', 'Global Industries LLC',
            'Johnson Family Trust', 'Metro Real Estate Group', 'Harbor Logistics GmbH',
        ]
        return [
            Client.objects.create(firm=firm, client_number=f'CLT{i + 1:04d}', name=name)
            for i, name in enumerate(names)
        ]

    def create_matters(self, firm, clients):
        titles = ['Commercial Lease Dispute', 'Series A Financing', 'Trademark Portfolio',
                  'Employment Claim Defence', 'Estate Administration', 'Supply Agreement Review']
        matters = []
        start_date = timezone.localdate() - timedelta(days=180)
        for i, client in enumerate(clients):
            # the last client is billed in euros
            currency = 'EUR' if i == len(clients) - 1 else 'USD'
            matters.append(Matter.objects.create(
                firm=firm,
                client=client,
                matter_number=f'{timezone.localdate().year}-{i + 1:04d}',
                title=random.choice(titles),
                fee_arrangement=random.choice(['hourly', 'hourly', 'retainer', 'flat_fee']),
                currency=currency,
                custom_hourly_rate=Decimal('300.00') if currency == 'EUR' else None,
                opened_date=start_date + timedelta(days=random.randint(0, 30)),
            ))
        return matters

    def create_advances(self, firm, matters, lawyers):
        for matter in matters:
            received = matter.opened_date + timedelta(days=random.randint(0, 10))
            if matter.fee_arrangement in ('retainer', 'hourly'):
                advances.deposit(
                    firm=firm,
                    advance_type=advances.CLIENT_RETAINER,
                    amount=Decimal(random.choice([2500, 5000, 10000])),
                    currency=matter.currency,
                    date_received=received,
                    client=matter.client,
                    matter=matter,
                    minimum_balance_alert=Decimal('1000.00'),
                )
            if random.random() < 0.5:
                advances.deposit(
                    firm=firm,
                    advance_type=advances.CLIENT_EXPENSE_ADVANCE,
                    amount=Decimal(random.choice([500, 1000])),
                    currency=matter.currency,
                    date_received=received,
                    client=matter.client,
                    matter=matter,
                )
            if matter.fee_arrangement == 'flat_fee':
                advances.deposit(
                    firm=firm,
                    advance_type='fee_payment_fixed',
                    amount=Decimal('3500.00'),
                    currency=matter.currency,
                    date_received=received,
                    client=matter.client,
                    matter=matter,
                )

        for lawyer in lawyers[:2]:
            advances.deposit(
                firm=firm,
                advance_type=advances.LAWYER_ADVANCE,
                amount=Decimal('750.00'),
                currency='USD',
                date_received=timezone.localdate() - timedelta(days=90),
                lawyer=lawyer,
            )

    def create_time_entries(self, firm, matters, lawyers):
        narratives = [
            'Review and analysis of documents',
            'Client conference call',
            'Draft correspondence to opposing counsel',
            'Legal research on applicable precedent',
            'Prepare for and attend hearing',
            'Revise agreement per client comments',
        ]
        for matter in matters:
            for _ in range(random.randint(4, 12)):
                capture.record_time_entry(
                    firm=firm,
                    lawyer=random.choice(lawyers),
                    matter=matter,
                    date=matter.opened_date + timedelta(days=random.randint(0, 120)),
                    minutes=random.choice([15, 30, 45, 60, 90, 120, 180, 240]),
                    narrative=random.choice(narratives),
                    billable=random.random() > 0.1,
                )

    def create_expenses(self, firm, matters, lawyers):
        categories = [
            ('Filing Fees', 50, 500),
            ('Court Reporter', 200, 1000),
            ('Travel', 100, 800),
            ('Copying/Printing', 20, 200),
            ('Expert Witness', 1000, 5000),
        ]
        for matter in random.sample(matters, k=max(1, len(matters) * 2 // 3)):
            for _ in range(random.randint(1, 3)):
                category, min_amt, max_amt = random.choice(categories)
                lawyer = random.choice(lawyers)
                try:
                    capture.record_expense(
                        firm=firm,
                        matter=matter,
                        lawyer=lawyer,
                        date=matter.opened_date + timedelta(days=random.randint(0, 120)),
                        category=category,
                        amount=Decimal(random.randint(min_amt, max_amt)),
                        markup_percent=Decimal(random.choice([0, 0, 10])),
                        deduct_from_advances=True,
                    )
                except LedgerError as e:
                    # an advance too small for the expense is expected now and then
                    self.stdout.write(self.style.WARNING(f'  Skipped expense on {matter}: {e}'))

    def create_invoices(self, firm, matters):
        created = 0
        today = timezone.localdate()
        for matter in matters:
            if not random.random() < 0.8:
                continue
            retainer = advances.find_active_advance(firm, matter.client, advances.CLIENT_RETAINER, matter=matter)
            try:
                invoice = invoices.compose_invoice(
                    firm=firm,
                    client=matter.client,
                    matter=matter,
                    discount_type=random.choice(['none', 'none', 'percent']),
                    discount_value=Decimal('5'),
                    vat_rate=Decimal(random.choice([0, 20])),
                    retainer_advance=retainer if retainer and retainer.currency == matter.currency else None,
                    issue_date=today - timedelta(days=random.randint(0, 60)),
                )
            except LedgerError as e:
                self.stdout.write(self.style.WARNING(f'  No invoice for {matter}: {e}'))
                continue
            created += 1

            roll = random.random()
            if roll < 0.2:
                continue
            invoice = invoices.send_invoice(invoice, sent_date=invoice.issue_date)
            if invoice.status == 'paid' or roll < 0.4:
                continue
            if roll < 0.7:
                invoices.record_payment(invoice, invoice.total, invoice.issue_date + timedelta(days=14),
                                        payment_method='wire')
            elif roll < 0.9:
                invoices.record_payment(invoice, (invoice.total / 2).quantize(Decimal('0.01')),
                                        invoice.issue_date + timedelta(days=20), payment_method='check')
            else:
                invoices.void_invoice(invoice, 'Client disputed the scope of work', write_off=True)
        return created
