"""Gmail AI Triage package.

Objective:
    Provide a Python implementation of an LLM-assisted inbox triage:
    - Read header-only metadata from Gmail for a search query.
    - Ask a Groq chat model to suggest keep / trash / review per email.
    - Group results by sender and let the user keep or trash from a web page.

Key modules:
    - :mod:`gmail_triage.auth`:
        Mailbox session context holding the in-memory bearer token.
    - :mod:`gmail_triage.gmail_client`:
        Gmail API wrapper (list, metadata, trash).
    - :mod:`gmail_triage.classifier`:
        Prompt construction, Groq calls, decision decoding and merge.
    - :mod:`gmail_triage.orchestrator`:
        Scan workflow (list -> fetch -> classify -> group -> persist).
    - :mod:`gmail_triage.storage` / :mod:`gmail_triage.blob_store`:
        Durable settings and last-scan documents.
    - :mod:`gmail_triage.presenter` / :mod:`gmail_triage.review`:
        Render models and manual keep / trash actions.
    - :mod:`gmail_triage.webapp` / :mod:`gmail_triage.cli`:
        User-facing entrypoints.
"""

__version__ = "0.1.0"
