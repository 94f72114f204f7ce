"""
Deterministic message templates used when the text generator is unavailable
and for every push title/body. Unknown languages fall back to pt-BR.
"""

DEFAULT_LANGUAGE = "pt-BR"
SUPPORTED_LANGUAGES = ("pt-BR", "en-US", "es-ES")

_TEMPLATES = {
    "pt-BR": {
        "missed_event": 'Opa! Vi que "{title}" ficou para trás {when}. Quer que eu reagende para amanhã no mesmo horário? \U0001F4C5',
        "missed_yesterday": "ontem",
        "missed_earlier": "mais cedo",
        "missed_push_title": "\U0001F4C5 Compromisso perdido",
        "overview_greeting_one": "Bom dia! \U0001F305 Você tem 1 compromisso hoje:\n\n",
        "overview_greeting_many": "Bom dia! \U0001F305 Você tem {count} compromissos hoje:\n\n",
        "overview_line": "{emoji} {time} - {title}\n",
        "overview_motivation": "\n\U0001F4AA Vai ser um ótimo dia!",
        "all_day": "Dia inteiro",
        "overview_push_title": "\U0001F4C5 Seu Dia Hoje",
        "overview_push_body_one": "Você tem 1 compromisso hoje. Confira sua agenda!",
        "overview_push_body_many": "Você tem {count} compromissos hoje. Confira sua agenda!",
        "weekly_arrival": "\U0001F4CA Seu resumo semanal chegou!",
        "weekly_summary": "{total} compromissos na semana: {completed} concluídos, {missed} perdidos, {pending} pendentes.",
        "weekly_push_title": "\U0001F4CA Resumo semanal pronto!",
        "weekly_push_body": "Veja como foi sua semana!",
        "weather_arrival": "\U0001F324️ Bom dia! Aqui está a previsão do tempo para hoje:",
        "weather_push_title": "\U0001F324️ Previsão do tempo",
        "weather_push_body": "{city}: {temperature}°C agora, mínima {min}°C e máxima {max}°C.",
        "your_city": "Sua cidade",
        "call_push_title": "\U0001F4DE Me Ligue",
        "call_push_body": "{title} às {time}",
    },
    "en-US": {
        "missed_event": 'Hey! I noticed "{title}" was missed {when}. Want me to reschedule it for tomorrow at the same time? \U0001F4C5',
        "missed_yesterday": "yesterday",
        "missed_earlier": "earlier",
        "missed_push_title": "\U0001F4C5 Missed appointment",
        "overview_greeting_one": "Good morning! \U0001F305 You have 1 appointment today:\n\n",
        "overview_greeting_many": "Good morning! \U0001F305 You have {count} appointments today:\n\n",
        "overview_line": "{emoji} {time} - {title}\n",
        "overview_motivation": "\n\U0001F4AA Have a great day!",
        "all_day": "All day",
        "overview_push_title": "\U0001F4C5 Your Day Today",
        "overview_push_body_one": "You have 1 appointment today. Check your schedule!",
        "overview_push_body_many": "You have {count} appointments today. Check your schedule!",
        "weekly_arrival": "\U0001F4CA Your weekly summary has arrived!",
        "weekly_summary": "{total} appointments this week: {completed} completed, {missed} missed, {pending} pending.",
        "weekly_push_title": "\U0001F4CA Weekly summary ready!",
        "weekly_push_body": "See how your week went!",
        "weather_arrival": "\U0001F324️ Good morning! Here's today's weather forecast:",
        "weather_push_title": "\U0001F324️ Weather forecast",
        "weather_push_body": "{city}: {temperature}°C now, low {min}°C and high {max}°C.",
        "your_city": "Your city",
        "call_push_title": "\U0001F4DE Call reminder",
        "call_push_body": "{title} at {time}",
    },
    "es-ES": {
        "missed_event": '¡Ey! Vi que "{title}" quedó atrás {when}. ¿Quieres que lo reprograme para mañana a la misma hora? \U0001F4C5',
        "missed_yesterday": "ayer",
        "missed_earlier": "más temprano",
        "missed_push_title": "\U0001F4C5 Compromiso perdido",
        "overview_greeting_one": "¡Buenos días! \U0001F305 Tienes 1 compromiso hoy:\n\n",
        "overview_greeting_many": "¡Buenos días! \U0001F305 Tienes {count} compromisos hoy:\n\n",
        "overview_line": "{emoji} {time} - {title}\n",
        "overview_motivation": "\n\U0001F4AA ¡Será un gran día!",
        "all_day": "Todo el día",
        "overview_push_title": "\U0001F4C5 Tu Día de Hoy",
        "overview_push_body_one": "Tienes 1 compromiso hoy. ¡Revisa tu agenda!",
        "overview_push_body_many": "Tienes {count} compromisos hoy. ¡Revisa tu agenda!",
        "weekly_arrival": "\U0001F4CA ¡Tu resumen semanal ha llegado!",
        "weekly_summary": "{total} compromisos en la semana: {completed} completados, {missed} perdidos, {pending} pendientes.",
        "weekly_push_title": "\U0001F4CA ¡Resumen semanal listo!",
        "weekly_push_body": "¡Mira cómo fue tu semana!",
        "weather_arrival": "\U0001F324️ ¡Buenos días! Aquí está el pronóstico del tiempo para hoy:",
        "weather_push_title": "\U0001F324️ Pronóstico del tiempo",
        "weather_push_body": "{city}: {temperature}°C ahora, mínima {min}°C y máxima {max}°C.",
        "your_city": "Tu ciudad",
        "call_push_title": "\U0001F4DE Llámame",
        "call_push_body": "{title} a las {time}",
    },
}


def normalize_language(language):
    return language if language in SUPPORTED_LANGUAGES else DEFAULT_LANGUAGE


def render(key, language=None, **values):
    template = _TEMPLATES[normalize_language(language)][key]
    return template.format(**values) if values else template


def daily_overview_text(events, language=None):
    """Plain overview used when no generated text is available."""
    count = len(events)
    if count == 1:
        text = render("overview_greeting_one", language)
    else:
        text = render("overview_greeting_many", language, count=count)
    for event in events:
        text += render(
            "overview_line",
            language,
            emoji=event.get("emoji") or "\U0001F4C5",
            time=event.get("time") or render("all_day", language),
            title=event.get("title") or "",
        )
    return text + render("overview_motivation", language)


def daily_overview_push_body(count, language=None):
    if count == 1:
        return render("overview_push_body_one", language)
    return render("overview_push_body_many", language, count=count)
