from datetime import date, datetime

# Monday
TODAY = date(2030, 1, 7)
START = datetime(2030, 1, 7, 8, 0)

SELLER = "seller-1"
BUYER_A = "buyer-a"
BUYER_B = "buyer-b"
