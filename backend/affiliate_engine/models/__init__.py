from .offers import Offer
from .affiliates import Affiliate, AffiliateLink
from .clicks import Click
from .attributions import OrderAttribution, SubscriptionAttribution, SubscriptionPayment
from .commissions import Commission
from .fraud import FraudFlag
from .payouts import PayoutRun, PayoutRunCommission
from .postbacks import PostbackLog, PostbackTemplate
