"""
Utilità fiscali turche: validazione VKN/TCKN, calcolo KDV, codici postali e province.

Funzioni pure e deterministiche, senza I/O. Tutta l'aritmetica monetaria usa Decimal
con arrotondamento ROUND_HALF_UP (non bancario), come richiesto dalla normativa.
"""

import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Union

from efatura.models.e_invoice_enums import ServiceCategory
from efatura.schemas.tax_schema import (
    AddressValidationResult,
    OrderTaxTotals,
    TaxableItem,
    TaxCalculationResult,
    TaxNumberValidationResult,
    VatBreakdownEntry,
    VatGroup,
)

Number = Union[Decimal, int, float, str]

TURKISH_VAT_RATES: Dict[str, int] = {
    "VAT_0": 0,  # İstisna/Muafiyetler
    "VAT_1": 1,  # Temel gıda, ilaç
    "VAT_8": 8,  # Kitap, gazete, dergi
    "VAT_18": 18,  # Standart oran
    "VAT_20": 20,  # Lüks ürünler
}

STANDARD_VAT_RATE = TURKISH_VAT_RATES["VAT_18"]

SERVICE_VAT_MAPPING: Dict[ServiceCategory, int] = {
    ServiceCategory.CARPET_CLEANING: STANDARD_VAT_RATE,
    ServiceCategory.UPHOLSTERY_CLEANING: STANDARD_VAT_RATE,
    ServiceCategory.CURTAIN_CLEANING: STANDARD_VAT_RATE,
    ServiceCategory.LAUNDRY: STANDARD_VAT_RATE,
    ServiceCategory.DRY_CLEANING: STANDARD_VAT_RATE,
    ServiceCategory.IRONING: STANDARD_VAT_RATE,
    ServiceCategory.STAIN_REMOVAL: STANDARD_VAT_RATE,
    ServiceCategory.OTHER: STANDARD_VAT_RATE,
}

TAX_EXEMPTION_CODES: Dict[str, str] = {
    "301": "KDV Kanunu madde 13/a-1",
    "302": "KDV Kanunu madde 13/a-2",
    "303": "KDV Kanunu madde 13/a-3",
    "350": "Diğer KDV istisnası",
    "351": "İhracat istisnası",
}

TURKISH_PROVINCES: Dict[str, str] = {
    "01": "Adana", "02": "Adıyaman", "03": "Afyonkarahisar", "04": "Ağrı",
    "05": "Amasya", "06": "Ankara", "07": "Antalya", "08": "Artvin",
    "09": "Aydın", "10": "Balıkesir", "11": "Bilecik", "12": "Bingöl",
    "13": "Bitlis", "14": "Bolu", "15": "Burdur", "16": "Bursa",
    "17": "Çanakkale", "18": "Çankırı", "19": "Çorum", "20": "Denizli",
    "21": "Diyarbakır", "22": "Edirne", "23": "Elazığ", "24": "Erzincan",
    "25": "Erzurum", "26": "Eskişehir", "27": "Gaziantep", "28": "Giresun",
    "29": "Gümüşhane", "30": "Hakkâri", "31": "Hatay", "32": "Isparta",
    "33": "Mersin", "34": "İstanbul", "35": "İzmir", "36": "Kars",
    "37": "Kastamonu", "38": "Kayseri", "39": "Kırklareli", "40": "Kırşehir",
    "41": "Kocaeli", "42": "Konya", "43": "Kütahya", "44": "Malatya",
    "45": "Manisa", "46": "Kahramanmaraş", "47": "Mardin", "48": "Muğla",
    "49": "Muş", "50": "Nevşehir", "51": "Niğde", "52": "Ordu",
    "53": "Rize", "54": "Sakarya", "55": "Samsun", "56": "Siirt",
    "57": "Sinop", "58": "Sivas", "59": "Tekirdağ", "60": "Tokat",
    "61": "Trabzon", "62": "Tunceli", "63": "Şanlıurfa", "64": "Uşak",
    "65": "Van", "66": "Yozgat", "67": "Zonguldak", "68": "Aksaray",
    "69": "Bayburt", "70": "Karaman", "71": "Kırıkkale", "72": "Batman",
    "73": "Şırnak", "74": "Bartın", "75": "Ardahan", "76": "Iğdır",
    "77": "Yalova", "78": "Karabük", "79": "Kilis", "80": "Osmaniye",
    "81": "Düzce",
}

VKN_INVALID_MESSAGE = "Geçersiz VKN format veya kontrol hanesi"
TCKN_INVALID_MESSAGE = "Geçersiz TCKN format veya kontrol hanesi"
TAX_NUMBER_LENGTH_MESSAGE = "Vergi numarası 10 haneli (VKN) veya 11 haneli (TCKN) olmalıdır"

_NON_DIGITS = re.compile(r"\D")


def to_decimal(value: Number) -> Decimal:
    """Converte in Decimal passando dalla rappresentazione stringa (33.335 resta 33.335)"""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round_amount(value: Number, precision: int = 2) -> Decimal:
    """Arrotonda half-up al numero di decimali richiesto"""
    exponent = Decimal(1).scaleb(-precision)
    return to_decimal(value).quantize(exponent, rounding=ROUND_HALF_UP)


def _clean_digits(value: str) -> str:
    return _NON_DIGITS.sub("", value or "")


def format_vat_rate_key(vat_rate: Number) -> str:
    """Chiave del riepilogo per aliquota, es. '18%' o '0.5%'"""
    rate = to_decimal(vat_rate)
    if rate == rate.to_integral_value():
        return f"{int(rate)}%"
    return f"{rate.normalize()}%"


def get_vat_rate_for_service(service_category: Optional[Union[ServiceCategory, str]]) -> int:
    """Aliquota KDV per categoria di servizio; aliquota standard per categorie ignote"""
    try:
        category = ServiceCategory((service_category or "").upper())
    except ValueError:
        return STANDARD_VAT_RATE
    return SERVICE_VAT_MAPPING.get(category, STANDARD_VAT_RATE)


def calculate_turkish_vat(net_amount: Number, vat_rate: Number, precision: int = 2) -> TaxCalculationResult:
    """
    Calcola la KDV su un imponibile.

    I campi vat_amount e gross_amount restano non arrotondati per l'aggregazione;
    l'arrotondamento half-up è applicato solo ai campi rounded_*.

    Raises:
        ValueError: se l'imponibile è negativo o l'aliquota è fuori da [0, 100]
    """
    net = to_decimal(net_amount)
    rate = to_decimal(vat_rate)

    if net < 0:
        raise ValueError("Net amount cannot be negative")
    if rate < 0 or rate > 100:
        raise ValueError("VAT rate must be between 0 and 100")

    vat_amount = net * rate / Decimal(100)
    gross_amount = net + vat_amount

    return TaxCalculationResult(
        net_amount=round_amount(net, precision),
        vat_rate=rate,
        vat_amount=vat_amount,
        gross_amount=gross_amount,
        rounded_vat_amount=round_amount(vat_amount, precision),
        rounded_gross_amount=round_amount(gross_amount, precision),
    )


def calculate_order_tax_totals(items: Iterable[Union[TaxableItem, dict]]) -> OrderTaxTotals:
    """
    Totali fiscali di un ordine con riepilogo per aliquota.

    Ogni riga contribuisce con l'imponibile arrotondato e la KDV arrotondata; i totali
    vengono arrotondati una sola volta alla fine, quindi subtotal + total_vat == total.
    """
    subtotal = Decimal("0")
    total_vat = Decimal("0")
    vat_breakdown: Dict[str, VatBreakdownEntry] = {}

    for raw_item in items:
        item = raw_item if isinstance(raw_item, TaxableItem) else TaxableItem.model_validate(raw_item)

        # 0 è un'aliquota esplicita valida, solo None ricade sulla categoria
        vat_rate = item.vat_rate if item.vat_rate is not None else get_vat_rate_for_service(
            item.service_category or "OTHER"
        )
        line_amount = item.line_amount if item.line_amount is not None else item.quantity * item.unit_price
        tax_calc = calculate_turkish_vat(line_amount, vat_rate)

        subtotal += tax_calc.net_amount
        total_vat += tax_calc.rounded_vat_amount

        vat_key = format_vat_rate_key(vat_rate)
        entry = vat_breakdown.setdefault(vat_key, VatBreakdownEntry())
        entry.amount += tax_calc.net_amount
        entry.vat_amount += tax_calc.rounded_vat_amount

    subtotal = round_amount(subtotal)
    total_vat = round_amount(total_vat)

    return OrderTaxTotals(
        subtotal=subtotal,
        total_vat=total_vat,
        total=round_amount(subtotal + total_vat),
        vat_breakdown=vat_breakdown,
    )


def group_vat_by_rate(lines: Iterable) -> List[VatGroup]:
    """
    Raggruppa le righe fattura per aliquota (ordine di prima comparsa).

    Accetta qualunque oggetto con line_amount, vat_rate e vat_amount già arrotondati.
    """
    groups: Dict[Decimal, VatGroup] = {}
    for line in lines:
        rate = to_decimal(line.vat_rate)
        group = groups.get(rate)
        if group is None:
            group = VatGroup(vat_rate=rate, taxable_amount=Decimal("0"), vat_amount=Decimal("0"))
            groups[rate] = group
        group.taxable_amount += round_amount(line.line_amount)
        group.vat_amount += round_amount(line.vat_amount)
    return list(groups.values())


def validate_vkn(vkn: str) -> bool:
    """Valida un Vergi Kimlik Numarası (10 cifre, cifra di controllo pesata)"""
    cleaned = _clean_digits(vkn)

    if len(cleaned) != 10:
        return False
    if cleaned == "0000000000":
        return False

    digits = [int(c) for c in cleaned]

    total = 0
    for i in range(9):
        temp = (digits[i] + (9 - i)) % 10
        multiplier = temp if temp != 9 else 9
        total += (multiplier * 2 ** (9 - i)) % 9

    check_digit = (10 - (total % 10)) % 10
    return check_digit == digits[9]


def validate_tckn(tckn: str) -> bool:
    """Valida un TC Kimlik Numarası (11 cifre, due cifre di controllo)"""
    cleaned = _clean_digits(tckn)

    if len(cleaned) != 11:
        return False
    if cleaned == "00000000000":
        return False

    digits = [int(c) for c in cleaned]

    if digits[0] == 0:
        return False

    odd_sum = digits[0] + digits[2] + digits[4] + digits[6] + digits[8]
    even_sum = digits[1] + digits[3] + digits[5] + digits[7]
    if (odd_sum * 7 - even_sum) % 10 != digits[9]:
        return False

    return sum(digits[:10]) % 10 == digits[10]


def validate_turkish_tax_number(tax_number: str) -> TaxNumberValidationResult:
    """Smista su VKN o TCKN in base alla lunghezza ripulita"""
    cleaned = _clean_digits(tax_number)

    if len(cleaned) == 10:
        is_valid = validate_vkn(cleaned)
        return TaxNumberValidationResult(
            is_valid=is_valid,
            type="VKN",
            formatted=cleaned,
            errors=[] if is_valid else [VKN_INVALID_MESSAGE],
        )
    if len(cleaned) == 11:
        is_valid = validate_tckn(cleaned)
        return TaxNumberValidationResult(
            is_valid=is_valid,
            type="TCKN",
            formatted=cleaned,
            errors=[] if is_valid else [TCKN_INVALID_MESSAGE],
        )
    return TaxNumberValidationResult(
        is_valid=False,
        type="INVALID",
        formatted=cleaned,
        errors=[TAX_NUMBER_LENGTH_MESSAGE],
    )


def format_turkish_tax_number(tax_number: str) -> str:
    """VKN come 'XXX XXX XX XX', TCKN come 'XXX XXX XXX XX'; input non valido invariato"""
    validation = validate_turkish_tax_number(tax_number)
    if not validation.is_valid:
        return tax_number

    c = validation.formatted
    if validation.type == "VKN":
        return f"{c[0:3]} {c[3:6]} {c[6:8]} {c[8:10]}"
    return f"{c[0:3]} {c[3:6]} {c[6:9]} {c[9:11]}"


def validate_turkish_postal_code(postal_code: str) -> bool:
    cleaned = _clean_digits(postal_code)
    if len(cleaned) != 5:
        return False
    return cleaned[:2] in TURKISH_PROVINCES


def get_province_from_postal_code(postal_code: str) -> Optional[str]:
    if not validate_turkish_postal_code(postal_code):
        return None
    return TURKISH_PROVINCES.get(_clean_digits(postal_code)[:2])


def validate_turkish_address(
    street: Optional[str] = None,
    district: Optional[str] = None,
    city: Optional[str] = None,
    postal_code: Optional[str] = None,
) -> AddressValidationResult:
    """Valida un indirizzo turco; il codice postale deve corrispondere alla provincia indicata"""
    errors: List[str] = []

    if not street or len(street.strip()) < 5:
        errors.append("Sokak adresi en az 5 karakter olmalıdır")

    if not district or len(district.strip()) < 2:
        errors.append("İlçe bilgisi gereklidir")

    if not city or len(city.strip()) < 2:
        errors.append("Şehir bilgisi gereklidir")

    if postal_code and not validate_turkish_postal_code(postal_code):
        errors.append("Geçersiz posta kodu formatı")

    if postal_code and city:
        province = get_province_from_postal_code(postal_code)
        if province and province.lower() != city.strip().lower():
            errors.append("Posta kodu ile şehir bilgisi uyuşmuyor")

    return AddressValidationResult(is_valid=not errors, errors=errors)


def generate_invoice_number(
    prefix: str = "EMU",
    current_number: int = 1,
    length: int = 8,
    year: Optional[int] = None,
) -> str:
    """Numero fattura '<prefisso>[<anno>]<progressivo a lunghezza fissa>'"""
    padded = str(current_number).zfill(length)
    if year is None:
        return f"{prefix}{padded}"
    return f"{prefix}{year:04d}{padded}"


def is_valid_turkish_vat_rate(rate: Number) -> bool:
    return to_decimal(rate) in {Decimal(r) for r in TURKISH_VAT_RATES.values()}


def get_tax_exemption_description(code: str) -> str:
    return TAX_EXEMPTION_CODES.get(code, "Bilinmeyen istisna kodu")


def format_turkish_currency(amount: Number) -> str:
    """Formato tr-TR: '₺1.234,56'"""
    rounded = round_amount(amount)
    sign = "-" if rounded < 0 else ""
    integer_part, fraction_part = f"{abs(rounded):.2f}".split(".")
    grouped = f"{int(integer_part):,}".replace(",", ".")
    return f"{sign}₺{grouped},{fraction_part}"


def calculate_late_payment_interest(amount: Number, days_past_due: int, annual_rate: Number = 12) -> Decimal:
    """Interesse di mora semplice su base giornaliera (anno di 365 giorni)"""
    if days_past_due <= 0:
        return Decimal("0")

    daily_rate = to_decimal(annual_rate) / Decimal(365) / Decimal(100)
    interest = to_decimal(amount) * daily_rate * Decimal(days_past_due)
    return round_amount(interest)
