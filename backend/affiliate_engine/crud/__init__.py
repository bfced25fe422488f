from .offers import create_offer, get_offer, list_offers, update_offer
from .affiliates import (
    create_affiliate,
    create_link,
    delete_affiliate,
    get_affiliate,
    list_affiliates,
    update_affiliate,
)
from .clicks import get_click, insert_click
from .attributions import get_attribution_by_order
from .commissions import get_commission, list_commissions
from .fraud import create_fraud_flag, get_fraud_flag, list_fraud_flags
from .payouts import get_payout_run, list_payout_runs
from .postbacks import create_template
