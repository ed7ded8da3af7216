"""
Module entry point for: python -m exambank

    python -m exambank parse-bank <file_or_dir> [options]
    python -m exambank upload <pdf_path> --subject <id>
    python -m exambank serve [options]
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
