"""Coin Metrology System configuration package"""
