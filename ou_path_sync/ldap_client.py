"""
LDAP client for the Active Directory forest and its domain controllers.

This module provides functionality to bind to a directory server, enumerate and resolve
the domains of a forest, locate a reachable domain controller per domain, page through
mail-enabled users and groups, and write the custom attribute back.
"""

import logging
import ssl
from dataclasses import dataclass
from typing import Dict, List, Any, Optional, Iterator

from ldap3 import Server, Connection, SUBTREE, BASE, ALL, Tls, MODIFY_REPLACE
from ldap3.core.exceptions import LDAPException, LDAPBindError
from ldap3.utils.conv import escape_filter_chars

from ou_path_sync.reconcile import DirectoryObject
from ou_path_sync.retry import retry_call, create_retry_callback, MaxRetriesExceeded

logger = logging.getLogger(__name__)

# LDAP_MATCHING_RULE_BIT_AND
BIT_AND = '1.2.840.113556.1.4.803'

# crossRef systemFlags: FLAG_CR_NTDS_NC | FLAG_CR_NTDS_DOMAIN
DOMAIN_CROSSREF_FILTER = f'(&(objectClass=crossRef)(systemFlags:{BIT_AND}:=3))'

# userAccountControl SERVER_TRUST_ACCOUNT
DOMAIN_CONTROLLER_FILTER = f'(&(objectCategory=computer)(userAccountControl:{BIT_AND}:=8192))'


class LDAPConnectionError(Exception):
    """Raised when LDAP connection fails."""
    pass


class LDAPQueryError(Exception):
    """Raised when LDAP query fails."""
    pass


class LDAPWriteError(Exception):
    """Raised when writing an attribute fails."""
    pass


class DomainResolutionError(Exception):
    """Raised when a requested domain cannot be found in the forest."""
    pass


@dataclass
class Domain:
    """A domain of the forest as described by its crossRef object."""

    dns_name: str
    netbios_name: Optional[str]
    naming_context: str

    def matches(self, identifier: str) -> bool:
        wanted = identifier.strip().rstrip('.').lower()
        candidates = [self.dns_name, self.netbios_name, self.naming_context]
        return any(c and c.lower() == wanted for c in candidates)


def _attr(entry, name: str, default=None):
    """Return a single attribute value from an ldap3 entry, or default."""
    attributes = entry.get('attributes', {}) if isinstance(entry, dict) else {}
    value = attributes.get(name, default)
    if isinstance(value, (list, tuple)):
        return value[0] if value else default
    if value in (None, '', b''):
        return default
    return value


def _format_timestamp(value) -> Optional[str]:
    if value is None:
        return None
    if hasattr(value, 'strftime'):
        return value.strftime('%Y-%m-%d %H:%M:%S')
    return str(value)


def build_mail_object_filter(excluded_user_pattern: str, excluded_group_type: str) -> str:
    """
    Build the search filter for Exchange-enabled users and mail-enabled groups.

    Args:
        excluded_user_pattern: name pattern of system mailboxes to skip (may contain '*')
        excluded_group_type: msExchRecipientTypeDetails of groups written back from the cloud

    Returns:
        LDAP filter string
    """
    user_clause = '(&(objectCategory=person)(objectClass=user)'
    if excluded_user_pattern:
        # Keep '*' as a wildcard, escape everything else
        pattern = '*'.join(escape_filter_chars(part) for part in excluded_user_pattern.split('*'))
        user_clause += f'(!(name={pattern}))'
    user_clause += ')'

    group_clause = '(&(objectCategory=group)'
    if excluded_group_type:
        group_clause += f'(!(msExchRecipientTypeDetails={escape_filter_chars(str(excluded_group_type))}))'
    group_clause += ')'

    return f'(&(showInAddressBook=*)(|{user_clause}{group_clause}))'


class DirectoryClient:
    """
    LDAP client for one directory server.

    A client bound to the configured forest server enumerates domains and discovers
    domain controllers; a client bound to a domain controller reads and writes objects.
    """

    def __init__(self, config: Dict[str, Any], server_url: Optional[str] = None):
        """
        Initialize directory client with configuration.

        Args:
            config: LDAP configuration dictionary
            server_url: Override for config['server_url'], e.g. a discovered DC
        """
        self.config = config
        self.server_url = server_url or config['server_url']
        self.bind_dn = config['bind_dn']
        self.bind_password = config['bind_password']
        self.base_dn = config.get('base_dn', '')

        # SSL/TLS configuration
        if server_url:
            # the scheme of an explicit DC URL wins over the forest setting
            self.use_ssl = server_url.lower().startswith('ldaps://')
        else:
            self.use_ssl = config.get('use_ssl', self.server_url.lower().startswith('ldaps://'))
        self.start_tls = config.get('start_tls', False)
        self.verify_ssl = config.get('verify_ssl', True)
        self.ca_cert_file = config.get('ca_cert_file')

        # Connection settings
        self.connection_timeout = config.get('connection_timeout', 10)
        self.receive_timeout = config.get('receive_timeout', 30)
        self.page_size = config.get('page_size', 1000)

        self.server = None
        self.connection = None
        self._connected = False

    def connect(self, max_retries: int = 3, retry_wait: float = 5) -> bool:
        """
        Establish connection to the directory server with retry logic.

        Args:
            max_retries: Maximum number of connection attempts
            retry_wait: Seconds to wait between retries

        Returns:
            True if connection successful

        Raises:
            LDAPConnectionError: If connection fails after all retries
        """
        try:
            self.server = Server(
                self.server_url,
                use_ssl=self.use_ssl,
                tls=self._create_tls_config(),
                get_info=ALL,
                connect_timeout=self.connection_timeout
            )
            logger.debug(f"Created LDAP server object for {self.server_url} (SSL: {self.use_ssl}, StartTLS: {self.start_tls})")
        except LDAPConnectionError:
            raise
        except Exception as e:
            raise LDAPConnectionError(f"Failed to create LDAP server: {e}")

        try:
            retry_call(
                self._open_and_bind,
                max_attempts=max_retries,
                delay=retry_wait,
                exceptions=(LDAPException, LDAPConnectionError),
                on_retry=create_retry_callback(f"Bind to {self.server_url}")
            )
        except MaxRetriesExceeded as e:
            raise LDAPConnectionError(f"Failed to connect to {self.server_url} after {e.attempts} attempts: {e.last_exception}")

        self._connected = True
        logger.info(f"Connected and bound to {self.server_url}")
        return True

    def _open_and_bind(self):
        self.connection = Connection(
            self.server,
            user=self.bind_dn,
            password=self.bind_password,
            auto_bind=False,
            receive_timeout=self.receive_timeout
        )
        try:
            self.connection.open()

            if self.start_tls and not self.use_ssl:
                if not self.connection.start_tls():
                    raise LDAPConnectionError(f"Failed to start TLS: {self.connection.result}")
                logger.debug("StartTLS negotiation successful")

            if not self.connection.bind():
                raise LDAPBindError(f"Bind failed: {self.connection.result}")
        except (LDAPException, LDAPConnectionError):
            self._discard_connection()
            raise

    def _discard_connection(self):
        if self.connection:
            try:
                self.connection.unbind()
            except LDAPException as e:
                logger.debug(f"Ignoring unbind error on failed connection: {e}")
            self.connection = None

    def _create_tls_config(self) -> Optional[Tls]:
        """
        Create TLS configuration for LDAP connection.

        Returns:
            Tls configuration object or None if not needed
        """
        if not (self.use_ssl or self.start_tls):
            return None

        tls_config = {
            'validate': ssl.CERT_REQUIRED if self.verify_ssl else ssl.CERT_NONE
        }
        if not self.verify_ssl:
            logger.warning("SSL certificate verification disabled")
        if self.ca_cert_file:
            tls_config['ca_certs_file'] = self.ca_cert_file

        try:
            return Tls(**tls_config)
        except Exception as e:
            raise LDAPConnectionError(f"Failed to create TLS configuration: {e}")

    def disconnect(self):
        """Close LDAP connection."""
        if self.connection and self._connected:
            try:
                self.connection.unbind()
                logger.debug(f"Connection to {self.server_url} closed")
            except LDAPException as e:
                logger.warning(f"Error closing LDAP connection: {e}")
            finally:
                self._connected = False
                self.connection = None

    def _require_connection(self):
        if not self._connected:
            raise LDAPQueryError("Not connected to LDAP server")

    def _search(self, search_base: str, search_filter: str, attributes: List[str],
                scope=SUBTREE) -> List[dict]:
        """Run a paged search and return the result entries."""
        self._require_connection()
        try:
            entries = self.connection.extend.standard.paged_search(
                search_base=search_base,
                search_filter=search_filter,
                search_scope=scope,
                attributes=attributes,
                paged_size=self.page_size,
                generator=False
            )
        except LDAPException as e:
            raise LDAPQueryError(f"Search under {search_base} failed: {e}")
        return [entry for entry in entries if entry.get('type') == 'searchResEntry']

    def _get_configuration_dn(self) -> str:
        """Find the configuration naming context from RootDSE."""
        if self.server and self.server.info and self.server.info.other:
            values = self.server.info.other.get('configurationNamingContext')
            if values:
                return values[0]

        # RootDSE not loaded, derive from base DN
        if self.base_dn:
            dc_parts = [part.strip() for part in self.base_dn.split(',') if part.strip().upper().startswith('DC=')]
            if dc_parts:
                return 'CN=Configuration,' + ','.join(dc_parts)

        raise LDAPQueryError("Cannot determine configuration naming context")

    def list_forest_domains(self) -> List[Domain]:
        """
        Enumerate the domains of the forest from the Partitions container.

        Returns:
            Domains ordered by DNS name

        Raises:
            LDAPQueryError: If the Partitions container cannot be read
        """
        partitions_dn = f"CN=Partitions,{self._get_configuration_dn()}"
        logger.debug(f"Enumerating domains under {partitions_dn}")

        entries = self._search(partitions_dn, DOMAIN_CROSSREF_FILTER, ['dnsRoot', 'nETBIOSName', 'nCName'])
        domains = []
        for entry in entries:
            dns_name = _attr(entry, 'dnsRoot')
            naming_context = _attr(entry, 'nCName')
            if not dns_name or not naming_context:
                logger.warning(f"Skipping incomplete crossRef entry: {entry.get('dn')}")
                continue
            domains.append(Domain(dns_name=str(dns_name).lower(),
                                  netbios_name=_attr(entry, 'nETBIOSName'),
                                  naming_context=str(naming_context)))

        domains.sort(key=lambda d: d.dns_name)
        logger.info(f"Found {len(domains)} domains in forest: {', '.join(d.dns_name for d in domains)}")
        return domains

    def resolve_domains(self, identifiers: List[str]) -> List[Domain]:
        """
        Resolve requested domain identifiers against the forest.

        Args:
            identifiers: DNS names, NetBIOS names or naming-context DNs

        Returns:
            Resolved domains in the requested order, duplicates removed

        Raises:
            DomainResolutionError: If any identifier does not name a forest domain
        """
        forest = self.list_forest_domains()
        resolved = []
        for identifier in identifiers:
            domain = next((d for d in forest if d.matches(identifier)), None)
            if domain is None:
                raise DomainResolutionError(f"Domain '{identifier}' not found in forest")
            if domain not in resolved:
                resolved.append(domain)
            logger.debug(f"Resolved '{identifier}' to {domain.dns_name}")
        return resolved

    def list_domain_controllers(self, domain: Domain) -> List[str]:
        """
        List the DNS host names of a domain's controllers.

        Args:
            domain: Domain to look up

        Returns:
            Host names, sorted
        """
        entries = self._search(domain.naming_context, DOMAIN_CONTROLLER_FILTER, ['dNSHostName'])
        hosts = sorted({str(_attr(e, 'dNSHostName')).lower() for e in entries if _attr(e, 'dNSHostName')})
        logger.debug(f"Domain {domain.dns_name} has {len(hosts)} domain controllers")
        return hosts

    def search_mail_objects(self, search_base: str, search_filter: str,
                            target_attribute: str) -> Iterator[DirectoryObject]:
        """
        Page through mail-enabled users and groups below a base DN.

        ldap3's paged generator hands back each page in reverse, so objects do not arrive
        in server order. Callers that report them sort first.

        Args:
            search_base: Domain naming context
            search_filter: Filter from build_mail_object_filter
            target_attribute: Custom attribute holding the stored path

        Yields:
            DirectoryObject per entry
        """
        self._require_connection()
        attributes = [
            'name', 'canonicalName', 'displayName', 'mail', 'objectClass',
            'whenCreated', 'whenChanged', 'msExchRecipientTypeDetails', target_attribute
        ]
        logger.debug(f"Searching {search_base} with filter: {search_filter}")

        try:
            entries = self.connection.extend.standard.paged_search(
                search_base=search_base,
                search_filter=search_filter,
                search_scope=SUBTREE,
                attributes=attributes,
                paged_size=self.page_size,
                generator=True
            )
            for entry in entries:
                if entry.get('type') != 'searchResEntry':
                    continue
                yield self._to_directory_object(entry, target_attribute)
        except LDAPException as e:
            raise LDAPQueryError(f"Object search under {search_base} failed: {e}")

    def _to_directory_object(self, entry: dict, target_attribute: str) -> DirectoryObject:
        attributes = entry.get('attributes', {})
        object_classes = attributes.get('objectClass') or []
        stored = _attr(entry, target_attribute)
        recipient_type = _attr(entry, 'msExchRecipientTypeDetails')
        return DirectoryObject(
            dn=entry['dn'],
            name=_attr(entry, 'name', ''),
            canonical_name=_attr(entry, 'canonicalName'),
            display_name=_attr(entry, 'displayName'),
            mail=_attr(entry, 'mail'),
            object_class=object_classes[-1] if object_classes else None,
            when_created=_format_timestamp(_attr(entry, 'whenCreated')),
            when_changed=_format_timestamp(_attr(entry, 'whenChanged')),
            stored_value=str(stored) if stored is not None else None,
            recipient_type_details=str(recipient_type) if recipient_type is not None else None,
        )

    def write_attribute(self, dn: str, attribute: str, value: str) -> None:
        """
        Replace one attribute value on an object.

        Raises:
            LDAPWriteError: If the server rejects the change
        """
        self._require_connection()
        try:
            success = self.connection.modify(dn, {attribute: [(MODIFY_REPLACE, [value])]})
        except LDAPException as e:
            raise LDAPWriteError(f"Modify of {attribute} on {dn} failed: {e}")
        if not success:
            result = self.connection.result or {}
            raise LDAPWriteError(f"Modify of {attribute} on {dn} rejected: "
                                 f"{result.get('description', 'unknown')} {result.get('message', '')}".strip())

    def test_connection(self) -> bool:
        """
        Test LDAP connection without throwing exceptions.

        Returns:
            True if RootDSE can be read
        """
        try:
            if not self._connected:
                self.connect(max_retries=1)
            return self.connection.search(
                search_base='',
                search_filter='(objectClass=*)',
                search_scope=BASE,
                attributes=['namingContexts']
            )
        except (LDAPException, LDAPConnectionError) as e:
            logger.debug(f"Connection test failed: {e}")
            return False

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()
