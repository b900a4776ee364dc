from django.core.management.base import BaseCommand, CommandError
from django.utils.dateparse import parse_date

from ledger.exceptions import LedgerError
from ledger.models import Firm
from ledger.services import revenue


class Command(BaseCommand):
    help = 'Print revenue for a period, per currency, optionally broken down by client or matter'

    def add_arguments(self, parser):
        parser.add_argument('firm', type=str, help='Firm code')
        parser.add_argument('start', type=str, help='First day of the period (YYYY-MM-DD)')
        parser.add_argument('end', type=str, help='Last day of the period (YYYY-MM-DD)')
        parser.add_argument(
            '--by',
            choices=['currency', 'client', 'matter'],
            default='currency',
            help='Breakdown to print (default: currency)',
        )

    def handle(self, *args, **options):
        firm = Firm.objects.filter(code=options['firm']).first()
        if firm is None:
            raise CommandError(f"Firm {options['firm']} not found")

        start, end = parse_date(options['start']), parse_date(options['end'])
        if start is None or end is None:
            raise CommandError('Dates must be given as YYYY-MM-DD')

        try:
            if options['by'] == 'client':
                rows = revenue.revenue_by_client(firm, start, end)
                self.print_rows(rows, 'client_id')
            elif options['by'] == 'matter':
                rows = revenue.revenue_by_matter(firm, start, end)
                self.print_rows(rows, 'matter_id')
            else:
                self.print_report(revenue.revenue_for_period(firm, start, end))
        except LedgerError as e:
            raise CommandError(e.message)

    def print_report(self, report):
        self.stdout.write(f'Revenue {report.start} to {report.end}')
        if not len(report):
            self.stdout.write(self.style.WARNING('No revenue in this period'))
            return
        for currency in report.currencies:
            summary = report[currency]
            self.stdout.write(f'\n{currency}')
            self.stdout.write(f'  Retainers:      {summary.retainers:>14}')
            self.stdout.write(f'  Fee payments:   {summary.fee_payments:>14}')
            self.stdout.write(f'  Paid invoices:  {summary.paid_invoices:>14}')
            self.stdout.write(self.style.SUCCESS(f'  Total:          {summary.total:>14}'))

    def print_rows(self, rows, key):
        if not rows:
            self.stdout.write(self.style.WARNING('No revenue in this period'))
            return
        for row in rows:
            self.stdout.write(f"{row[key]:>8}  {row['currency']}  {row['total']:>14}")
