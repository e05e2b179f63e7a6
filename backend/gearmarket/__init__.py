"""GearMarket account API"""
