"""
Standing Engine — pure decision logic.

Nothing in this package touches storage or the network. Services in
standing.services load documents, call into here, and write the results.
"""
