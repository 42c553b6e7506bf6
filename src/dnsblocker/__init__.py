"""dnsblocker package"""
