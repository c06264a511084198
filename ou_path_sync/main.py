"""
Main orchestrator for OU Path Sync.

This module walks the requested domains of the forest, derives each mail-enabled object's
OU path from its canonical name and writes it into the configured custom attribute when the
stored value is missing or stale.
"""

import sys
import json
import time
import logging
import argparse
from datetime import datetime
from typing import Dict, Any, List, Optional, Set

from ou_path_sync.config import load_config, ConfigurationError
from ou_path_sync.logging_setup import setup_logging
from ou_path_sync.ldap_client import (
    DirectoryClient,
    Domain,
    LDAPConnectionError,
    LDAPQueryError,
    LDAPWriteError,
    DomainResolutionError,
    build_mail_object_filter
)
from ou_path_sync.reconcile import (
    DirectoryObject,
    DomainSummary,
    RunSummary,
    ReconciliationRecord,
    ACTION_ADD,
    ACTION_MISSING_CANONICAL_NAME,
    OUTCOME_SUCCESSFUL,
    OUTCOME_FAILED,
    OUTCOME_WHATIF,
    OUTCOME_SKIPPED,
    NOT_AVAILABLE,
    derive_parent_path,
    classify,
    build_record
)
from ou_path_sync.export import export_records
from ou_path_sync.notifications import send_failure_notification, send_run_summary, format_elapsed

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_PARTIAL_FAILURE = 1
EXIT_CONFIGURATION_ERROR = 2
EXIT_CONNECTION_ERROR = 3
EXIT_UNEXPECTED_ERROR = 4
EXIT_DOMAIN_RESOLUTION_ERROR = 5


class OUPathSync:
    """
    Batch job that reconciles the OU path attribute across the forest.

    Domains are processed one at a time. Each domain's counters and records are returned
    from _process_domain and merged into the run summary.
    """

    def __init__(self, config_path: Optional[str] = None, domains: Optional[List[str]] = None,
                 dry_run: bool = False, output_path: Optional[str] = None, verbose: bool = False):
        """
        Initialize the sync job.

        Args:
            config_path: Path to configuration file
            domains: Domain identifiers to process; all forest domains when empty
            dry_run: Compute and report changes without writing
            output_path: CSV file to export records to
            verbose: Console logging at DEBUG
        """
        self.config_path = config_path
        self.requested_domains = list(domains or [])
        self.dry_run = dry_run
        self.output_path = output_path
        self.verbose = verbose

        self.config = None
        self.forest_client = None
        self.summary = RunSummary(dry_run=dry_run)
        self.processed_dns: Set[str] = set()
        self.elapsed_seconds = 0.0

    @property
    def sync_config(self) -> Dict[str, Any]:
        return self.config.get('sync', {})

    @property
    def target_attribute(self) -> str:
        return self.sync_config.get('target_attribute', 'extensionAttribute15')

    def run(self) -> int:
        """
        Run the complete synchronization process.

        Returns:
            Exit code (0 for success, non-zero for failure)
        """
        start = time.monotonic()
        try:
            self._load_configuration()
            setup_logging(self.config.get('logging', {}), verbose=self.verbose)

            mode = "WhatIf mode, no changes will be written" if self.dry_run else "live mode"
            logger.info(f"Starting OU Path Sync of {self.target_attribute} ({mode})")

            self._connect_forest()
            domains = self._resolve_domains()

            for domain in domains:
                self._run_domain(domain)

            self._export()

            self.elapsed_seconds = time.monotonic() - start
            self._log_run_summary()
            self._send_summary_notification()

            if self.summary.domains_failed or self.summary.failures:
                logger.warning(f"Sync completed with {self.summary.domains_failed} failed domains "
                               f"and {self.summary.failures} failed writes")
                return EXIT_PARTIAL_FAILURE
            logger.info("Sync completed successfully")
            return EXIT_SUCCESS

        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return EXIT_CONFIGURATION_ERROR
        except LDAPConnectionError as e:
            logger.error(f"Directory connection error: {e}")
            self._send_failure_notification("Directory Connection Failed", str(e))
            return EXIT_CONNECTION_ERROR
        except DomainResolutionError as e:
            logger.error(f"Domain resolution error: {e}")
            self._send_failure_notification("Domain Resolution Failed", str(e))
            return EXIT_DOMAIN_RESOLUTION_ERROR
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            self._send_failure_notification("Sync Failed", f"Unexpected error: {e}")
            return EXIT_UNEXPECTED_ERROR
        finally:
            self._cleanup()

    def _load_configuration(self):
        """Load and validate configuration."""
        try:
            self.config = load_config(self.config_path)
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {e}")

        if not self.requested_domains:
            self.requested_domains = list(self.sync_config.get('domains') or [])

    def _retry_settings(self) -> Dict[str, Any]:
        error_config = self.config.get('error_handling', {})
        return {
            'max_retries': error_config.get('max_retries', 3),
            'retry_wait': error_config.get('retry_wait_seconds', 5)
        }

    def _connect_forest(self):
        """Bind to the configured forest server."""
        self.forest_client = DirectoryClient(self.config['ldap'])
        try:
            self.forest_client.connect(**self._retry_settings())
        except LDAPConnectionError:
            self.forest_client = None
            raise

    def _resolve_domains(self) -> List[Domain]:
        """Resolve the requested domains, or list the whole forest when none were requested."""
        try:
            if self.requested_domains:
                domains = self.forest_client.resolve_domains(self.requested_domains)
            else:
                domains = self.forest_client.list_forest_domains()
        except LDAPQueryError as e:
            raise DomainResolutionError(f"Failed to enumerate forest domains: {e}")

        if not domains:
            raise DomainResolutionError("No domains found to process")

        logger.info(f"Processing {len(domains)} domains: {', '.join(d.dns_name for d in domains)}")
        return domains

    def _run_domain(self, domain: Domain):
        """Process one domain and merge its counters; a domain failure does not stop the run."""
        try:
            domain_summary = self._process_domain(domain)
        except (LDAPConnectionError, LDAPQueryError) as e:
            logger.error(f"Failed to process domain {domain.dns_name}: {e}")
            self.summary.domains_failed += 1
            return
        self.summary.merge(domain_summary)

    def _process_domain(self, domain: Domain, seen_dns: Optional[Set[str]] = None) -> DomainSummary:
        """
        Reconcile every mail-enabled object of a domain.

        Args:
            domain: Domain to process
            seen_dns: DNs already handled in this run; objects found again are ignored

        Returns:
            Counters and records for the domain
        """
        if seen_dns is None:
            seen_dns = self.processed_dns

        domain_start = datetime.now()
        summary = DomainSummary(domain=domain.dns_name)
        logger.info(f"Processing domain: {domain.dns_name}")

        search_filter = build_mail_object_filter(
            self.sync_config.get('excluded_user_pattern', ''),
            self.sync_config.get('excluded_group_type', '')
        )

        with self._connect_domain_controller(domain) as dc_client:
            objects = dc_client.search_mail_objects(domain.naming_context, search_filter, self.target_attribute)
            try:
                for obj in objects:
                    key = obj.dn.lower()
                    if key in seen_dns:
                        logger.debug(f"Already processed {obj.dn} in this run")
                        continue
                    seen_dns.add(key)

                    record = self._process_object(dc_client, obj, domain.dns_name, summary)
                    if record is not None and self.output_path:
                        summary.records.append(record)
            except LDAPQueryError as e:
                # Writes already made stay counted
                logger.error(f"Search of {domain.dns_name} stopped after {summary.objects_seen} objects: {e}")
                summary.error = str(e)

        self._log_domain_summary(summary)
        runtime = (datetime.now() - domain_start).total_seconds()
        logger.info(f"Completed domain: {domain.dns_name} in {runtime:.2f} seconds")
        return summary

    def _domain_controller_url(self, host: str) -> str:
        if '://' in host:
            return host
        scheme = 'ldaps' if self.forest_client.use_ssl else 'ldap'
        return f"{scheme}://{host}"

    def _connect_domain_controller(self, domain: Domain) -> DirectoryClient:
        """
        Bind to the first reachable domain controller of a domain.

        Raises:
            LDAPConnectionError: If no controller answers
        """
        configured = self.sync_config.get('domain_controllers', {}) or {}
        # keys may name the domain by DNS name, NetBIOS name or naming context, any case
        hosts = next((h for key, h in configured.items() if domain.matches(str(key))), None)
        if hosts:
            logger.debug(f"Using configured domain controllers for {domain.dns_name}: {', '.join(hosts)}")
        else:
            hosts = self.forest_client.list_domain_controllers(domain)
        if not hosts:
            raise LDAPConnectionError(f"No domain controllers found for {domain.dns_name}")

        errors = []
        for host in hosts:
            client = DirectoryClient(self.config['ldap'], server_url=self._domain_controller_url(host))
            try:
                client.connect(max_retries=1, retry_wait=0)
            except LDAPConnectionError as e:
                logger.warning(f"Domain controller {host} unreachable: {e}")
                errors.append(f"{host}: {e}")
                continue
            logger.info(f"Using domain controller {host} for {domain.dns_name}")
            return client

        raise LDAPConnectionError(f"No reachable domain controller for {domain.dns_name}: {'; '.join(errors)}")

    def _process_object(self, client: DirectoryClient, obj: DirectoryObject, domain_name: str,
                        summary: DomainSummary) -> Optional[ReconciliationRecord]:
        """
        Classify one object and write its path if needed.

        Returns:
            A record when the object had an action, otherwise None
        """
        summary.objects_seen += 1

        if not obj.canonical_name:
            logger.warning(f"{obj.label} has no canonicalName, skipping ({obj.dn})")
            summary.skipped += 1
            return build_record(obj, domain_name, ACTION_MISSING_CANONICAL_NAME, OUTCOME_SKIPPED,
                                NOT_AVAILABLE, NOT_AVAILABLE)

        derived_path = derive_parent_path(
            obj.canonical_name,
            obj.name,
            truncate=self.sync_config.get('truncate_path', False),
            max_length=self.sync_config.get('max_path_length', 448)
        )
        action = classify(obj.stored_value, derived_path)

        if action is None:
            logger.debug(f"{obj.label} already set to '{derived_path}'")
            return None

        if self.dry_run:
            outcome = OUTCOME_WHATIF
            logger.info(f"WhatIf: {action} {self.target_attribute} on {obj.label}: "
                        f"'{obj.stored_value or ''}' -> '{derived_path}'")
        else:
            try:
                client.write_attribute(obj.dn, self.target_attribute, derived_path)
            except LDAPWriteError as e:
                logger.error(f"Failed to {action.lower()} {self.target_attribute} on {obj.label}: {e}")
                summary.failures += 1
                return build_record(obj, domain_name, action, OUTCOME_FAILED, derived_path, obj.stored_value)
            outcome = OUTCOME_SUCCESSFUL
            logger.info(f"{action} {self.target_attribute} on {obj.label}: "
                        f"'{obj.stored_value or ''}' -> '{derived_path}'")

        if action == ACTION_ADD:
            summary.adds += 1
        else:
            summary.updates += 1

        return build_record(obj, domain_name, action, outcome, derived_path, obj.stored_value)

    def _export(self):
        """Write collected records to the output file, if one was requested."""
        if not self.output_path:
            return
        try:
            # paged search order is not the server order; sort for a stable report
            records = sorted(
                self.summary.records,
                key=lambda r: (r.domain.casefold(), (r.display_name or '').casefold())
            )
            export_records(records, self.output_path)
        except OSError as e:
            logger.error(f"Failed to export records to {self.output_path}: {e}")
            self.summary.failures += 1

    def _log_domain_summary(self, summary: DomainSummary):
        if self.dry_run:
            logger.info(f"{summary.domain}: {summary.adds} objects would have {self.target_attribute} added "
                        f"and {summary.updates} would have it updated out of {summary.objects_seen} examined")
        else:
            logger.info(f"{summary.domain}: {summary.adds} objects had {self.target_attribute} added "
                        f"and {summary.updates} had it updated out of {summary.objects_seen} examined")

    def _log_run_summary(self):
        """Log final synchronization statistics."""
        stats = self.summary
        verb = "would be" if self.dry_run else "were"

        logger.info("=== Sync Summary ===")
        logger.info(f"Domains processed: {stats.domains_processed}")
        logger.info(f"Domains failed: {stats.domains_failed}")
        logger.info(f"Objects examined: {stats.objects_seen}")
        logger.info(f"Attributes that {verb} added: {stats.adds}")
        logger.info(f"Attributes that {verb} updated: {stats.updates}")
        logger.info(f"Write failures: {stats.failures}")
        logger.info(f"Skipped (missing canonicalName): {stats.skipped}")
        logger.info(f"Total elapsed time: {format_elapsed(self.elapsed_seconds)}")

    def _send_failure_notification(self, title: str, error_message: str):
        """Send email notification for failures."""
        if not self.config:
            return
        try:
            send_failure_notification(title, error_message, self.config.get('notifications', {}))
        except Exception as e:
            logger.error(f"Failed to send failure notification: {e}")

    def _send_summary_notification(self):
        try:
            send_run_summary(self.summary, self.elapsed_seconds, self.config.get('notifications', {}))
        except Exception as e:
            logger.error(f"Failed to send summary notification: {e}")

    def health_check(self) -> Dict[str, Any]:
        """
        Check configuration and forest connectivity without touching any object.

        Returns:
            Dictionary containing health status and details
        """
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'checks': {}
        }

        try:
            self._load_configuration()
            health_status['checks']['configuration'] = {
                'status': 'pass',
                'message': 'Configuration loaded successfully'
            }
        except ConfigurationError as e:
            health_status['checks']['configuration'] = {
                'status': 'fail',
                'message': f'Configuration error: {e}'
            }
            health_status['status'] = 'unhealthy'
            return health_status

        try:
            with DirectoryClient(self.config['ldap']) as client:
                client.connect(max_retries=1, retry_wait=1)
                domains = client.list_forest_domains()
            health_status['checks']['ldap'] = {
                'status': 'pass',
                'message': f'Connected, {len(domains)} domains visible'
            }
        except (LDAPConnectionError, LDAPQueryError) as e:
            health_status['checks']['ldap'] = {
                'status': 'fail',
                'message': f'Directory check failed: {e}'
            }
            health_status['status'] = 'unhealthy'

        return health_status

    def _cleanup(self):
        """Clean up resources."""
        if self.forest_client:
            self.forest_client.disconnect()
            self.forest_client = None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Write the OU path of mail-enabled AD users and groups into a custom attribute'
    )
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--domain', '-d', action='append', dest='domains', default=[],
                        help='Domain to process (repeatable); defaults to every domain in the forest')
    parser.add_argument('--whatif', '--dry-run', action='store_true', dest='dry_run',
                        help='Report the changes without writing them')
    parser.add_argument('--output', '-o', help='Export per-object results to this CSV file')
    parser.add_argument('--verbose', '-v', action='store_true', help='Log debug detail to the console')
    parser.add_argument('--health-check', action='store_true',
                        help='Check configuration and directory connectivity instead of syncing')
    return parser


def main(argv: Optional[List[str]] = None):
    """Main entry point for the application."""
    args = build_parser().parse_args(argv)

    job = OUPathSync(
        config_path=args.config,
        domains=args.domains,
        dry_run=args.dry_run,
        output_path=args.output,
        verbose=args.verbose
    )

    if args.health_check:
        health_status = job.health_check()
        print(json.dumps(health_status, indent=2))
        sys.exit(0 if health_status['status'] == 'healthy' else 1)

    sys.exit(job.run())


if __name__ == "__main__":
    main()
