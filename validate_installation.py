#!/usr/bin/env python3
"""
Installation check for OU Path Sync.

Confirms the dependencies import, the package modules load, the path derivation
behaves, and the CLI answers --help.
"""

import sys
import importlib
import subprocess


def check_dependency(package_name, import_name=None):
    """Check if a package/module can be imported."""
    if import_name is None:
        import_name = package_name

    try:
        importlib.import_module(import_name)
        return True, f"✓ {package_name} available"
    except ImportError as e:
        return False, f"✗ {package_name} missing: {e}"


def validate_dependencies():
    """Validate all required dependencies."""
    print("=== Dependency Validation ===")

    dependencies = [
        ("ldap3", "ldap3"),
        ("PyYAML", "yaml"),
    ]

    all_ok = True
    for pkg_name, import_name in dependencies:
        ok, message = check_dependency(pkg_name, import_name)
        print(f"  {message}")
        if not ok:
            all_ok = False

    return all_ok


def validate_core_modules():
    """Validate core application modules."""
    print("\n=== Core Module Validation ===")

    modules = [
        "ou_path_sync.config",
        "ou_path_sync.main",
        "ou_path_sync.ldap_client",
        "ou_path_sync.reconcile",
        "ou_path_sync.export",
        "ou_path_sync.notifications",
        "ou_path_sync.retry",
        "ou_path_sync.logging_setup",
    ]

    all_ok = True
    for module in modules:
        ok, message = check_dependency(module, module)
        print(f"  {message}")
        if not ok:
            all_ok = False

    return all_ok


def validate_functionality():
    """Validate path derivation and filter building."""
    print("\n=== Functionality Validation ===")

    try:
        from ou_path_sync.reconcile import derive_parent_path, classify, ACTION_ADD
        path = derive_parent_path("contoso.com/Sales/Jane Doe", "Jane Doe")
        if path != "contoso.com/Sales/" or classify(None, path) != ACTION_ADD:
            print(f"  ✗ Path derivation returned {path!r}")
            return False
        print("  ✓ Path derivation")

        from ou_path_sync.ldap_client import build_mail_object_filter
        build_mail_object_filter("SystemMailbox*", "2147483648")
        print("  ✓ Search filter")

        return True

    except Exception as e:
        print(f"  ✗ Functionality test failed: {e}")
        return False


def validate_cli():
    """Validate command-line interface."""
    print("\n=== CLI Validation ===")

    result = subprocess.run([sys.executable, "-m", "ou_path_sync", "--help"],
                            capture_output=True, text=True)
    if result.returncode == 0:
        print("  ✓ Help command working")
        return True
    print(f"  ✗ Help command failed: {result.stderr.strip()}")
    return False


def main():
    """Run all validations."""
    print("OU Path Sync - Installation Validation")
    print("=" * 50)

    all_validations = [
        validate_dependencies(),
        validate_core_modules(),
        validate_functionality(),
        validate_cli(),
    ]

    print("\n=== Summary ===")
    if all(all_validations):
        print("✓ All validations passed!")
        print("\nNext steps:")
        print("  1. Copy config.example.yaml to config.yaml and fill in the LDAP settings")
        print("  2. Test with: python -m ou_path_sync --health-check")
        print("  3. Preview with: python -m ou_path_sync --whatif --output preview.csv")
        print("  4. Run sync: python -m ou_path_sync")
        return 0
    print("✗ Some validations failed!")
    return 1


if __name__ == "__main__":
    sys.exit(main())
