"""Shared ids and endpoints used by test fixtures."""

SELLER_ID = 1
BUYER_ID = 2
SELLER_ENDPOINT = "http://seller.test/agents/1/a2a/"
BUYER_ENDPOINT = "http://buyer.test/agents/2/a2a/"
