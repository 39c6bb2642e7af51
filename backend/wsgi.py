# backend/wsgi.py
# Entry point for `python -m flask --app wsgi ...` and WSGI servers.
from invoicedesk import create_app

app = create_app()
