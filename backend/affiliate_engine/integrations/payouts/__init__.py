from affiliate_engine.integrations.payouts.base import PayoutBatch, PayoutItem, PayoutProvider
from affiliate_engine.integrations.payouts.paypal import PayPalPayoutProvider
