#!/usr/bin/env python3
"""
Main execution module for the CMS asset migration tool
"""

from cms_migrator.cli.commands import main

if __name__ == "__main__":
    main()
