"""
Secure Document Service Routes Package
"""

from .documents import router as documents_router, get_document_service, set_document_service

__all__ = ['documents_router', 'get_document_service', 'set_document_service']
