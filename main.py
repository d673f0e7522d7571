#!/usr/bin/env python3
"""
SynPat - Patent Portfolio Licensing Catalog
Main Entry Point

Usage:
    python main.py --init-db                    # Create tables, repair portfolio counters
    python main.py --render portfolio 3         # Render a document to PDF
    python main.py --merge-portfolio 3          # Portfolio + all its patents in one PDF
    python main.py --analyze 1 2 3              # Score patents
    python main.py --import patents.csv         # Bulk import
"""

import sys
import json
import argparse
import logging
from pathlib import Path

from synpat.config import load_config
from synpat.database import DatabaseManager, Patent
from synpat.errors import SynPatError
from synpat.hooks import HookRegistry
from synpat.patent_analyzer import PatentAnalyzer
from synpat.pdf_generator import DocumentRenderer, SUBJECT_TYPES
from synpat.pdf_merger import DocumentMerger
from synpat.data_import import DataImporter, SUPPORTED_FORMATS
from synpat.batch_processor import BatchProcessor, EXPORT_FORMATS, JOB_TYPES
from synpat.reporting import Reporting, REPORT_FORMATS


def setup_logging(config: dict):
    """Configure logging based on config"""
    log_level = getattr(logging, config.get('logging', {}).get('level', 'INFO'))
    if config.get('logging', {}).get('verbose'):
        log_level = logging.DEBUG
    log_file = config.get('logging', {}).get('file', 'output/synpat.log')

    # Ensure log directory exists
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(sys.stdout)
        ]
    )

    return logging.getLogger(__name__)


def print_json(data):
    print(json.dumps(data, indent=2, default=str))


def list_catalog(db_manager: DatabaseManager):
    portfolios = db_manager.get_portfolios(status=None, limit=1000)
    if portfolios:
        print("\nPortfolios:")
        print("-" * 70)
        for p in portfolios:
            print(f"  ID: {p.id}")
            print(f"  Title: {p.title}")
            print(f"  Status: {p.status}")
            print(f"  Patents: {p.n_patents or 0} ({p.essential_count or 0} essential)")
            print("-" * 70)
    else:
        print("\nNo portfolios yet.")

    session = db_manager.get_session()
    try:
        patents = session.query(Patent).order_by(Patent.id).all()
    finally:
        session.close()

    if patents:
        print("\nPatents:")
        print("-" * 70)
        for p in patents:
            score = 'not analyzed' if p.strength_score is None else f"{p.strength_score:.2f}"
            print(f"  ID: {p.id}")
            print(f"  Patent Number: {p.patent_number}")
            print(f"  Title: {p.title or 'N/A'}")
            print(f"  Strength: {score}")
            print("-" * 70)
    else:
        print("\nNo patents in the catalog yet.")


def main():
    parser = argparse.ArgumentParser(
        description="SynPat - Patent Portfolio Licensing Catalog",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python main.py --init-db                           # Create database tables
    python main.py --list                              # List portfolios and patents
    python main.py --render patent 12                  # Render patent 12
    python main.py --render portfolio 3 --template portfolio
    python main.py --merge-portfolio 3                 # Portfolio packet PDF
    python main.py --merge a.pdf b.pdf --output ab.pdf # Concatenate PDFs
    python main.py --analyze 1 2 3                     # Strength analysis
    python main.py --import patents.json               # Import a file
    python main.py --import-remote US7654321B2         # Import from Google Patents
    python main.py --export 1 2 3 --format xml         # Export patents
    python main.py --schedule analyze --ids 1 2 3      # Queue a background job
    python main.py --run-jobs                          # Process due jobs
    python main.py --report analysis_summary           # Catalog report
    python main.py --cleanup                           # Remove old temp files
        """
    )

    parser.add_argument('--config', '-c', type=str, default='config.yaml', help='Path to config file')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')
    parser.add_argument('--init-db', action='store_true', help='Create tables and repair portfolio counters')
    parser.add_argument('--list', '-l', action='store_true', help='List portfolios and patents')

    # Documents
    parser.add_argument('--render', nargs=2, metavar=('TYPE', 'ID'),
                        help=f"Render a document ({', '.join(SUBJECT_TYPES)})")
    parser.add_argument('--template', type=str, help='Template name for --render')
    parser.add_argument('--merge-portfolio', type=int, metavar='PORTFOLIO_ID',
                        help='Render and merge a portfolio with its patents')
    parser.add_argument('--merge', nargs='+', metavar='PATH', help='Merge PDF files in order')
    parser.add_argument('--output', '-o', type=str, help='Output path for --merge')

    # Analysis and data
    parser.add_argument('--analyze', nargs='+', type=int, metavar='PATENT_ID', help='Analyze patents')
    parser.add_argument('--import', dest='import_file', type=str, metavar='FILE', help='Import patents from file')
    parser.add_argument('--import-remote', type=str, metavar='PATENT_NUMBER',
                        help='Import a patent from Google Patents')
    parser.add_argument('--export', nargs='+', type=int, metavar='PATENT_ID', help='Export patents')
    parser.add_argument('--format', type=str,
                        choices=sorted(set(SUPPORTED_FORMATS) | set(EXPORT_FORMATS) | set(REPORT_FORMATS)),
                        help='File format for --import, --export and --report')

    # Background jobs and reports
    parser.add_argument('--schedule', type=str, choices=JOB_TYPES, help='Schedule a background batch job')
    parser.add_argument('--ids', nargs='+', type=int, default=[], metavar='PATENT_ID',
                        help='Patent IDs for --schedule')
    parser.add_argument('--run-jobs', action='store_true', help='Process pending batch jobs that are due')
    parser.add_argument('--report', type=str, metavar='TYPE', help='Generate a catalog report')
    parser.add_argument('--cleanup', action='store_true', help='Delete temporary PDFs past their max age')

    args = parser.parse_args()

    # Load configuration
    try:
        config = load_config(args.config)
    except FileNotFoundError:
        print(f"Error: Config file not found: {args.config}")
        print("Please ensure config.yaml exists in the project directory.")
        sys.exit(1)

    if args.verbose:
        config.setdefault('logging', {})['verbose'] = True

    logger = setup_logging(config)
    logger.info("=" * 60)
    logger.info("SynPat - Patent Portfolio Licensing Catalog")
    logger.info(f"Database: {config['paths']['database']}")
    logger.info("=" * 60)

    hooks = HookRegistry()
    db_manager = DatabaseManager(config['paths']['database'], hooks)

    try:
        if args.init_db:
            db_manager.create_tables()
            changed = db_manager.reconcile_portfolio_counts()
            print(f"Database ready ({changed} portfolio counter(s) repaired)")

        if args.list:
            list_catalog(db_manager)

        if args.render:
            subject_type, subject_id = args.render
            renderer = DocumentRenderer(db_manager, config, hooks)
            document = renderer.render(subject_type, int(subject_id), args.template)
            print(f"\nDocument generated with {document.strategy}:")
            print(f"  File: {document.file_path}")
            print(f"  URL: {document.file_url}")
            if not document.is_pdf:
                print("  Note: no PDF converter succeeded; open the HTML file and print it.")

        if args.merge_portfolio:
            merger = DocumentMerger(db_manager, config, hooks)
            document = merger.merge_portfolio_with_patents(args.merge_portfolio)
            print(f"\nPortfolio packet: {document.file_path}")

        if args.merge:
            merger = DocumentMerger(db_manager, config, hooks)
            document = merger.merge(args.merge, args.output)
            print(f"\nMerged PDF: {document.file_path}")

        if args.analyze:
            batch = BatchProcessor(db_manager, config, hooks, PatentAnalyzer(db_manager, hooks))
            print_json(batch.batch_analyze_patents(args.analyze))

        if args.import_file:
            importer = DataImporter(db_manager, config, hooks)
            print_json(importer.import_from_file(args.import_file, args.format))

        if args.import_remote:
            importer = DataImporter(db_manager, config, hooks)
            patent_id, created = importer.import_from_google_patents(args.import_remote)
            print(f"\n{'Imported' if created else 'Updated'} patent {args.import_remote} (ID: {patent_id})")

        if args.export:
            batch = BatchProcessor(db_manager, config, hooks)
            print_json(batch.batch_export_patents(args.export, args.format or 'csv'))

        if args.schedule:
            batch = BatchProcessor(db_manager, config, hooks)
            params = {'patent_ids': args.ids}
            if args.schedule == 'export':
                params['format'] = args.format or 'csv'
            job_id = batch.schedule_batch_job(args.schedule, params)
            print(f"\nScheduled {args.schedule} job: {job_id}")

        if args.run_jobs:
            batch = BatchProcessor(db_manager, config, hooks)
            jobs = batch.run_pending_jobs()
            print(f"\nProcessed {len(jobs)} job(s)")
            for job in jobs:
                print(f"  {job['job_id']}: {job['status']}")

        if args.report:
            reporting = Reporting(db_manager, config)
            report = reporting.generate_report(args.report)
            if args.format:
                print_json(reporting.export_report_data(report, args.format))
            else:
                print_json(report)

        if args.cleanup:
            merger = DocumentMerger(db_manager, config, hooks)
            removed = merger.cleanup_temp_files()
            print(f"\nRemoved {removed} temporary file(s)")

    except SynPatError as e:
        logger.error(f"{e.code}: {e.message}")
        print(f"\nError [{e.code}]: {e.message}")
        sys.exit(1)


if __name__ == "__main__":
    main()
