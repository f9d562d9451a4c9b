"""
Core cross-cutting concerns: the exception taxonomy shared by the node
client, the store client and the ingestion pipeline.
"""
