"""
DataWeave Provenance Core

Every agent operation becomes an immutable, content-addressed record:
- Content hash over the canonical record document
- Signature over the record's identity fields
- Durable storage reference for the uploaded payload
- Back-link to the previous record of the same origin
"""

from dataweave.provenance.record_store import RecordStore
from dataweave.provenance.query import QueryEngine
from dataweave.provenance.verifier import ChainVerifier
from dataweave.provenance.hashing import HmacSigner, RecordSigner
