"""Prompt templates for transaction extraction.

Prompts are versioned so stored predictions can be traced back to the
prompt that produced them.
"""

from dataclasses import dataclass

# v2.0: multi-transaction output ("transactions" list)
PROMPT_VERSION = "v2.0"

# Cohort code -> country context given to the model
COHORT_CONTEXT = {
    "BOL": ("Bolivia", "BOB"),
    "ARG": ("Argentina", "ARS"),
    "CHL": ("Chile", "CLP"),
    "COL": ("Colombia", "COP"),
    "MEX": ("México", "MXN"),
    "PER": ("Perú", "PEN"),
}


@dataclass
class ExtractionPrompt:
    """Prompt template for extracting transactions from a transcript.

    Attributes:
        version: Prompt version.
        system_prompt: System message setting LLM behavior.
        user_template: Template for the user message.
    """

    version: str = PROMPT_VERSION

    system_prompt: str = """Eres un asistente experto en finanzas personales que extrae transacciones de mensajes.

MONEDAS SOPORTADAS (reconoce estas monedas y sus variaciones):
- Boliviano (BOB): "bolivianos", "bs", "boliviano"
- Dólar estadounidense (USD): "dólares", "dolares", "usd", "$"
- Euro (EUR): "euros", "eur", "euro"
- Peso mexicano (MXN), peso argentino (ARS), peso chileno (CLP), peso colombiano (COP)
- Sol peruano (PEN): "soles", "pen", "sol peruano"

CATEGORÍAS DE REFERENCIA (puedes usar otras más específicas si es apropiado):
comida, transporte, educacion, tecnologia, salud, entretenimiento, servicios, ropa, hogar, otros

MÉTODOS DE PAGO:
efectivo, tarjeta, transferencia, cheque, crypto, otro (por defecto "efectivo")

INSTRUCCIONES:
1. Un mensaje puede mencionar VARIAS transacciones: devuelve una por cada monto
2. Extrae el monto exacto mencionado (número positivo)
3. Determina si es "gasto" o "ingreso"
4. Extrae una descripción corta del producto o servicio
5. Si no se menciona la moneda, usa la moneda local del país indicado

Devuelve SOLO JSON válido:
{"transactions": [{"monto": 50, "categoria": "comida", "tipo": "gasto", "descripcion": "almuerzo", "metodoPago": "efectivo", "moneda": "BOB"}]}"""

    user_template: str = """País del usuario: {country} (moneda local {currency})

Extrae las transacciones de este mensaje: "{transcript}"

Ejemplos:
- "Gasté 50 bolivianos en comida" → {{"transactions": [{{"monto": 50, "categoria": "comida", "tipo": "gasto", "descripcion": "comida", "metodoPago": "efectivo", "moneda": "BOB"}}]}}
- "Pagué 20 de taxi y 5 de pan" → {{"transactions": [{{"monto": 20, "categoria": "transporte", "tipo": "gasto", "descripcion": "taxi", "metodoPago": "efectivo", "moneda": "{currency}"}}, {{"monto": 5, "categoria": "comida", "tipo": "gasto", "descripcion": "pan", "metodoPago": "efectivo", "moneda": "{currency}"}}]}}
- "Me pagaron 200 soles" → {{"transactions": [{{"monto": 200, "categoria": "otros", "tipo": "ingreso", "descripcion": "pago recibido", "metodoPago": "efectivo", "moneda": "PEN"}}]}}

Devuelve solo JSON válido:"""

    def format_user_message(self, transcript: str, cohort: str, default_currency: str) -> str:
        """Format the user message for a transcript and cohort."""
        country, currency = COHORT_CONTEXT.get(cohort.upper(), (cohort, default_currency))
        return self.user_template.format(
            country=country,
            currency=currency,
            transcript=transcript.replace('"', "'"),
        )
