"""SOAP note state merging."""

from clinical_core.soap.merger import SectionStrategy, SOAPStateMerger

__all__ = ["SectionStrategy", "SOAPStateMerger"]
